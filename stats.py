"""
=============================================================================
STATS.PY — Estadísticas globales del jugador
=============================================================================
Responde a UNA pregunta: "¿cuánto lleva este jugador en X?"

  resolve(db, user_id, "collect_pokemon")   → 7
  resolve(db, user_id, "reach_level")       → 4
  resolve(db, user_id, "collect_type_fire") → 2

Cada RequirementKind tiene su función en la tabla RESOLVERS.

Fuentes de verdad:
  - reach_level, earn_gold   → columnas del perfil
  - colección, favoritos, equipos, inventario → contar filas
  - por tipo / por generación → cruzar los pokedex_id capturados con la
    tabla estática pokemon_species (la generación también sale del rango
    del número de Pokédex si falta la especie)

user_global_stats es solo una caché desnormalizada. Se usa para los tipos
cuando no hay ninguna especie cargada, y se recalcula con refresh_global_stats.

Si algo falla al consultar → se devuelve 0. Quedarse corto nunca regala
recompensas; pasarse sí.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog import RequirementKind, parse_requirement
from models import (
    Favorite, InventoryCategory, InventoryItem, PokemonSpecies, Team,
    UserGlobalStats, UserPokemon
)
from progression import get_level, get_total_gold_earned

logger = logging.getLogger("umbradex.stats")


# =============================================================================
# ===================== GENERACIONES ==========================================
# =============================================================================
# Rangos de la Pokédex nacional por generación.

GENERATION_RANGES = [
    (1, 151, 1),
    (152, 251, 2),
    (252, 386, 3),
    (387, 493, 4),
    (494, 649, 5),
    (650, 721, 6),
    (722, 809, 7),
    (810, 905, 8),
    (906, 1025, 9),
]


def generation_for_pokedex_id(pokedex_id: int) -> int:
    """Generación de una especie por su número. 0 si está fuera de rango."""
    for first, last, generation in GENERATION_RANGES:
        if first <= pokedex_id <= last:
            return generation
    return 0


# =============================================================================
# ===================== CONTADORES ============================================
# =============================================================================

INVENTORY_CATEGORY_BY_KIND = {
    RequirementKind.own_skins: InventoryCategory.skin.value,
    RequirementKind.own_badges: InventoryCategory.badge.value,
    RequirementKind.own_themes: InventoryCategory.theme.value,
    RequirementKind.own_name_colors: InventoryCategory.name_color.value,
    RequirementKind.own_titles: InventoryCategory.title.value,
}

# Columna de user_global_stats que cachea cada tipo de requisito
STATS_COLUMN_BY_KIND = {
    RequirementKind.collect_pokemon: "total_pokemon_collected",
    RequirementKind.favorite_count: "total_favorites",
    RequirementKind.create_team: "total_teams",
    RequirementKind.shop_buy: "total_shop_purchases",
    RequirementKind.own_skins: "total_skins",
    RequirementKind.own_badges: "total_badges",
    RequirementKind.own_themes: "total_themes",
    RequirementKind.own_name_colors: "total_name_colors",
    RequirementKind.own_titles: "total_titles",
}


def _level(db: Session, user_id: str, argument: Optional[str]) -> int:
    return get_level(db, user_id)


def _gold_earned(db: Session, user_id: str, argument: Optional[str]) -> int:
    return get_total_gold_earned(db, user_id)


def _count_pokemon(db: Session, user_id: str, argument: Optional[str]) -> int:
    return db.query(func.count(UserPokemon.id)).filter(UserPokemon.user_id == user_id).scalar()


def _count_favorites(db: Session, user_id: str, argument: Optional[str]) -> int:
    return db.query(func.count(Favorite.id)).filter(Favorite.user_id == user_id).scalar()


def _count_teams(db: Session, user_id: str, argument: Optional[str]) -> int:
    return db.query(func.count(Team.id)).filter(Team.user_id == user_id).scalar()


def count_inventory(db: Session, user_id: str, category: Optional[str] = None) -> int:
    query = db.query(func.count(InventoryItem.id)).filter(InventoryItem.user_id == user_id)
    if category is not None:
        query = query.filter(InventoryItem.category == category)
    return query.scalar()


def _count_shop_purchases(db: Session, user_id: str, argument: Optional[str]) -> int:
    return count_inventory(db, user_id)


def _inventory_counter(kind: RequirementKind):
    category = INVENTORY_CATEGORY_BY_KIND[kind]

    def counter(db: Session, user_id: str, argument: Optional[str]) -> int:
        return count_inventory(db, user_id, category)
    return counter


def _owned_pokedex_ids(db: Session, user_id: str) -> list[int]:
    return [row.pokedex_id for row in
            db.query(UserPokemon.pokedex_id).filter(UserPokemon.user_id == user_id).all()]


def _species_for(db: Session, pokedex_ids: list[int]) -> list[PokemonSpecies]:
    if not pokedex_ids:
        return []
    return db.query(PokemonSpecies).filter(PokemonSpecies.pokedex_id.in_(pokedex_ids)).all()


def _count_by_type(db: Session, user_id: str, type_name: Optional[str]) -> int:
    owned = _owned_pokedex_ids(db, user_id)
    if not owned:
        return 0

    species = _species_for(db, owned)
    if not species:
        # Sin tabla de especies no se puede reconstruir: usamos la caché
        stats = db.query(UserGlobalStats).filter(UserGlobalStats.user_id == user_id).first()
        if stats is None:
            return 0
        return int((stats.type_counts or {}).get(type_name, 0))

    return sum(1 for s in species if type_name in _normalize_types(s.types))


def _count_by_generation(db: Session, user_id: str, generation: Optional[str]) -> int:
    target = int(generation)
    owned = _owned_pokedex_ids(db, user_id)
    if not owned:
        return 0

    known = {s.pokedex_id: s.generation for s in _species_for(db, owned)}
    return sum(
        1 for pokedex_id in owned
        if (known.get(pokedex_id) or generation_for_pokedex_id(pokedex_id)) == target
    )


def _normalize_types(types) -> list[str]:
    return [t.lower() for t in (types or [])]


RESOLVERS = {
    RequirementKind.reach_level: _level,
    RequirementKind.earn_gold: _gold_earned,
    RequirementKind.collect_pokemon: _count_pokemon,
    RequirementKind.favorite_count: _count_favorites,
    RequirementKind.create_team: _count_teams,
    RequirementKind.shop_buy: _count_shop_purchases,
    RequirementKind.own_skins: _inventory_counter(RequirementKind.own_skins),
    RequirementKind.own_badges: _inventory_counter(RequirementKind.own_badges),
    RequirementKind.own_themes: _inventory_counter(RequirementKind.own_themes),
    RequirementKind.own_name_colors: _inventory_counter(RequirementKind.own_name_colors),
    RequirementKind.own_titles: _inventory_counter(RequirementKind.own_titles),
    RequirementKind.collect_type: _count_by_type,
    RequirementKind.collect_gen: _count_by_generation,
}


# =============================================================================
# ===================== RESOLVER ==============================================
# =============================================================================

def resolve(db: Session, user_id: str, requirement_type: str) -> int:
    """
    Valor actual del jugador para un tipo de requisito.

    Nunca lanza: cualquier error de BD se registra y devuelve 0.
    La consulta va dentro de un SAVEPOINT para que un fallo no deje
    abortada la transacción de quien llama.
    """
    parsed = parse_requirement(requirement_type)
    if parsed is None:
        logger.warning(f"⚠️ Tipo de requisito desconocido: {requirement_type}")
        return 0

    kind, argument = parsed
    resolver = RESOLVERS[kind]
    try:
        with db.begin_nested():
            value = resolver(db, user_id, argument)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error obteniendo progreso global de {requirement_type} para {user_id}: {e}")
        return 0

    return max(int(value or 0), 0)


# =============================================================================
# ===================== CACHÉ DESNORMALIZADA ==================================
# =============================================================================

def get_or_create_global_stats(db: Session, user_id: str) -> UserGlobalStats:
    stats = db.query(UserGlobalStats).filter(UserGlobalStats.user_id == user_id).first()
    if stats is None:
        stats = UserGlobalStats(user_id=user_id, type_counts={}, gen_counts={})
        db.add(stats)
        db.flush()
    return stats


def refresh_global_stats(db: Session, user_id: str) -> UserGlobalStats:
    """
    Recalcula user_global_stats desde las tablas reales.
    No hace commit.
    """
    stats = get_or_create_global_stats(db, user_id)

    for kind, column in STATS_COLUMN_BY_KIND.items():
        setattr(stats, column, RESOLVERS[kind](db, user_id, None) or 0)

    owned = _owned_pokedex_ids(db, user_id)
    species = {s.pokedex_id: s for s in _species_for(db, owned)}

    type_counts: dict[str, int] = {}
    gen_counts: dict[str, int] = {}
    for pokedex_id in owned:
        specie = species.get(pokedex_id)
        if specie is not None:
            for type_name in _normalize_types(specie.types):
                type_counts[type_name] = type_counts.get(type_name, 0) + 1
        generation = (specie.generation if specie is not None else None) or generation_for_pokedex_id(pokedex_id)
        if generation:
            gen_counts[str(generation)] = gen_counts.get(str(generation), 0) + 1

    if species:
        stats.type_counts = type_counts
    # Sin especies cargadas no sabemos los tipos: se conservan los contadores incrementales
    stats.gen_counts = gen_counts
    stats.updated_at = datetime.utcnow()
    db.flush()
    logger.info(f"📊 Estadísticas globales recalculadas para {user_id}")
    return stats


def bump_global_stat(db: Session, user_id: str, requirement_type: str, delta: int = 1) -> bool:
    """
    Suma delta al contador desnormalizado de un tipo de requisito.
    Devuelve False si el tipo no tiene contador (nivel, oro o desconocido).
    """
    parsed = parse_requirement(requirement_type)
    if parsed is None:
        return False
    kind, argument = parsed

    if kind in STATS_COLUMN_BY_KIND:
        stats = get_or_create_global_stats(db, user_id)
        column = STATS_COLUMN_BY_KIND[kind]
        setattr(stats, column, (getattr(stats, column) or 0) + delta)
    elif kind in (RequirementKind.collect_type, RequirementKind.collect_gen):
        stats = get_or_create_global_stats(db, user_id)
        field = "type_counts" if kind is RequirementKind.collect_type else "gen_counts"
        # Copia nueva: SQLAlchemy no detecta cambios dentro de un dict JSON
        counts = dict(getattr(stats, field) or {})
        counts[argument] = counts.get(argument, 0) + delta
        setattr(stats, field, counts)
    else:
        return False

    stats.updated_at = datetime.utcnow()
    db.flush()
    return True


# =============================================================================
# ===================== ESPECIES ==============================================
# =============================================================================

def seed_species(db: Session, species: Iterable[dict]) -> int:
    """
    Inserta especies en la tabla estática si no existen.
    Cada entrada: {"pokedex_id": 4, "name": "charmander", "types": ["fire"]}
    La generación se deduce del número si no viene.
    """
    existing = {row.pokedex_id for row in db.query(PokemonSpecies.pokedex_id).all()}
    created = 0
    for entry in species:
        pokedex_id = int(entry["pokedex_id"])
        if pokedex_id in existing:
            continue
        db.add(PokemonSpecies(
            pokedex_id=pokedex_id,
            name=entry.get("name", str(pokedex_id)),
            types=_normalize_types(entry.get("types")),
            generation=entry.get("generation") or generation_for_pokedex_id(pokedex_id) or None,
        ))
        existing.add(pokedex_id)
        created += 1
    db.commit()
    if created:
        logger.info(f"✅ {created} especies insertadas")
    return created


def load_species_file(path: str) -> list[dict]:
    """Lee un JSON con una lista de especies (formato de seed_species)"""
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)
