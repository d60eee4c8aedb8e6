"""
=============================================================================
MODELS.PY — Todos los Modelos (Tablas) de la Base de Datos
=============================================================================
Cada clase aquí = una tabla en la base de datos.

Piensa en esto como un organigrama:
  PROFILE (un jugador)
  ├── user_pokemons[]     → Pokémon de la Living Dex
  ├── favorites[]
  ├── teams[]
  ├── inventory[]         → skins, badges, temas, colores, títulos
  ├── missions_progress[] → progreso en cada misión
  └── user_global_stats   → contadores desnormalizados

  MISSION (catálogo, lo define el sistema)
  └── prerequisite_mission → como mucho UN padre (cadenas, no grafos)

  POKEMON_SPECIES (tabla estática: tipos y generación de cada especie)
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, JSON, UniqueConstraint,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# =============================================================================
# ===================== ENUMS =================================================
# =============================================================================

class MissionStatus(str, enum.Enum):
    """Estado de una misión para un usuario. Solo avanza: locked → active → completed"""
    locked = "locked"
    active = "active"
    completed = "completed"


class InventoryCategory(str, enum.Enum):
    """Categorías de los objetos de la tienda"""
    skin = "skin"
    badge = "badge"
    theme = "theme"
    name_color = "name_color"
    title = "title"


# =============================================================================
# ===================== TABLA 1: PROFILES =====================================
# =============================================================================
# El id lo asigna la plataforma de autenticación (UUID en texto).

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    username = Column(String(50), nullable=False)

    # ── Recursos ──
    gold = Column(Integer, default=0, nullable=False)
    xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    xp_for_next_level = Column(Integer, default=60, nullable=False)

    # ── Estadísticas ──
    total_gold_earned = Column(Integer, default=0, nullable=False)
    # total_gold_earned → nunca baja al gastar oro (lo usan las misiones earn_gold)
    total_xp_earned = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    pokemons = relationship("UserPokemon", back_populates="profile", cascade="all, delete-orphan")
    favorites = relationship("Favorite", back_populates="profile", cascade="all, delete-orphan")
    teams = relationship("Team", back_populates="profile", cascade="all, delete-orphan")
    inventory = relationship("InventoryItem", back_populates="profile", cascade="all, delete-orphan")
    missions_progress = relationship("MissionProgress", back_populates="profile", cascade="all, delete-orphan")


# =============================================================================
# ===================== TABLA 2: MISSIONS =====================================
# =============================================================================
# Catálogo de misiones DISPONIBLES. Se siembra una vez y casi nunca cambia.

class Mission(Base):
    __tablename__ = "missions"

    id = Column(Integer, primary_key=True)
    # id fijo (no autoincrement) para que los prerequisitos sean estables al sembrar

    title = Column(String(100), nullable=False)
    description = Column(String(300), nullable=True)
    category = Column(String(30), nullable=False, default="collection")
    # category → "collection", "progression", "social", "shop", "types", "generations"

    requirement_type = Column(String(50), nullable=False, index=True)
    # requirement_type → "collect_pokemon", "reach_level", "collect_type_fire"...
    requirement_value = Column(Integer, nullable=False)
    # requirement_value → umbral que hay que alcanzar

    gold_reward = Column(Integer, default=0, nullable=False)
    xp_reward = Column(Integer, default=0, nullable=False)

    prerequisite_mission_id = Column(Integer, ForeignKey("missions.id"), nullable=True, index=True)
    # Si es NULL → misión raíz (activa desde el principio)

    sort_order = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("requirement_value >= 0", name="ck_mission_requirement_value"),
    )

    prerequisite = relationship("Mission", remote_side=[id])


# =============================================================================
# ===================== TABLA 3: MISSIONS_PROGRESS ============================
# =============================================================================
# Una fila por (usuario, misión). Se crea cuando la misión pasa a ser alcanzable.

class MissionProgress(Base):
    __tablename__ = "missions_progress"

    user_id = Column(String(36), ForeignKey("profiles.id"), primary_key=True)
    mission_id = Column(Integer, ForeignKey("missions.id"), primary_key=True)

    status = Column(String(20), default=MissionStatus.locked.value, nullable=False)
    current_value = Column(Integer, default=0, nullable=False)
    # current_value → nunca supera el requirement_value de la misión

    completed_at = Column(DateTime, nullable=True)
    # completed_at → se fija UNA vez, al pasar a completed

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("current_value >= 0", name="ck_progress_current_value"),
        Index("ix_missions_progress_user_status", "user_id", "status"),
    )

    profile = relationship("Profile", back_populates="missions_progress")
    mission = relationship("Mission")


# =============================================================================
# ===================== TABLA 4: USER_POKEMONS ================================
# =============================================================================
# La Living Dex: un registro por especie capturada.

class UserPokemon(Base):
    __tablename__ = "user_pokemons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    pokedex_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "pokedex_id", name="uq_user_pokemon"),
    )

    profile = relationship("Profile", back_populates="pokemons")


# =============================================================================
# ===================== TABLA 5: FAVORITES ====================================
# =============================================================================

class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    pokedex_id = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "pokedex_id", name="uq_favorite"),
    )

    profile = relationship("Profile", back_populates="favorites")


# =============================================================================
# ===================== TABLA 6: TEAMS ========================================
# =============================================================================

class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String(60), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    profile = relationship("Profile", back_populates="teams")


# =============================================================================
# ===================== TABLA 7: INVENTORY ====================================
# =============================================================================
# Objetos comprados en la tienda. Cada fila = una compra.

class InventoryItem(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    item_id = Column(String(60), nullable=False)
    # item_id → "standard_male1", "theme_default", "start_badget"...
    category = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    profile = relationship("Profile", back_populates="inventory")


# =============================================================================
# ===================== TABLA 8: POKEMON_SPECIES ==============================
# =============================================================================
# Tabla estática. Permite contar por tipo y por generación a partir de
# los pokedex_id capturados, sin fiarse de contadores desnormalizados.

class PokemonSpecies(Base):
    __tablename__ = "pokemon_species"

    pokedex_id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)
    types = Column(JSON, nullable=False, default=list)
    # types → ["grass", "poison"] (siempre en minúsculas)
    generation = Column(Integer, nullable=True)


# =============================================================================
# ===================== TABLA 9: USER_GLOBAL_STATS ============================
# =============================================================================
# Contadores desnormalizados. Son una CACHÉ: la verdad está en las tablas de arriba.

class UserGlobalStats(Base):
    __tablename__ = "user_global_stats"

    user_id = Column(String(36), ForeignKey("profiles.id"), primary_key=True)

    total_pokemon_collected = Column(Integer, default=0, nullable=False)
    total_favorites = Column(Integer, default=0, nullable=False)
    total_teams = Column(Integer, default=0, nullable=False)
    total_shop_purchases = Column(Integer, default=0, nullable=False)
    total_skins = Column(Integer, default=0, nullable=False)
    total_badges = Column(Integer, default=0, nullable=False)
    total_themes = Column(Integer, default=0, nullable=False)
    total_name_colors = Column(Integer, default=0, nullable=False)
    total_titles = Column(Integer, default=0, nullable=False)

    type_counts = Column(JSON, nullable=False, default=dict)
    # type_counts → {"fire": 3, "water": 5}
    gen_counts = Column(JSON, nullable=False, default=dict)
    # gen_counts → {"1": 12, "2": 4} (claves en texto para que el JSON sea estable)

    updated_at = Column(DateTime, default=datetime.utcnow)
