"""
=============================================================================
PROGRESSION.PY — Perfil del jugador: niveles, oro y XP
=============================================================================
Es el "colaborador de perfil" del motor de misiones:
  - get_level / get_total_gold_earned → los leen las misiones reach_level / earn_gold
  - grant_gold / grant_xp             → los usa el claim para pagar recompensas

IMPORTANTE: aquí NO se hace commit. Quien llama (el claim) decide si
todo el conjunto se confirma o se deshace.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session
from models import Profile

logger = logging.getLogger("umbradex.progression")


# =============================================================================
# ===================== SISTEMA DE NIVELES ====================================
# =============================================================================
# Cada nivel necesita más XP que el anterior.
# Fórmula: XP_necesario = nivel * 60
# Nivel 1 → 60 XP, Nivel 2 → 120 XP, Nivel 10 → 600 XP...

XP_PER_LEVEL = 60


def xp_for_next_level(level: int) -> int:
    """XP necesario para subir del nivel actual al siguiente"""
    return level * XP_PER_LEVEL


def calculate_level(total_xp: int) -> int:
    """Calcula el nivel basándose en el XP total acumulado"""
    level = 1
    xp_remaining = total_xp
    while xp_remaining >= xp_for_next_level(level):
        xp_remaining -= xp_for_next_level(level)
        level += 1
    return level


def xp_before_level(level: int) -> int:
    """XP acumulado necesario para llegar al inicio de un nivel"""
    return sum(xp_for_next_level(lvl) for lvl in range(1, level))


def get_level_info(profile: Profile) -> dict:
    """Información completa del nivel del jugador"""
    level = profile.level
    xp_needed = xp_for_next_level(level)
    xp_in_current_level = profile.xp - xp_before_level(level)

    return {
        "level": level,
        "xp": profile.xp,
        "xp_in_level": xp_in_current_level,
        "xp_next_level": xp_needed,
        "xp_progress": round((xp_in_current_level / xp_needed) * 100, 1) if xp_needed > 0 else 100,
        "gold": profile.gold,
        "total_gold_earned": profile.total_gold_earned,
    }


# =============================================================================
# ===================== LECTURAS ==============================================
# =============================================================================

def get_profile(db: Session, user_id: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_level(db: Session, user_id: str) -> int:
    level = db.query(Profile.level).filter(Profile.id == user_id).scalar()
    return level or 0


def get_total_gold_earned(db: Session, user_id: str) -> int:
    total = db.query(Profile.total_gold_earned).filter(Profile.id == user_id).scalar()
    return total or 0


# =============================================================================
# ===================== RECOMPENSAS ===========================================
# =============================================================================

def grant_gold(db: Session, user_id: str, amount: int) -> int:
    """
    Suma oro al jugador. total_gold_earned también sube (nunca baja).
    Usa un UPDATE atómico (gold = gold + :amount) para no perder sumas concurrentes.
    Devuelve el número de perfiles actualizados (0 si el perfil no existe).
    """
    if amount < 0:
        raise ValueError("grant_gold only accepts non-negative amounts")
    if amount == 0:
        return 1 if get_profile(db, user_id) else 0

    updated = db.query(Profile).filter(Profile.id == user_id).update(
        {
            Profile.gold: Profile.gold + amount,
            Profile.total_gold_earned: Profile.total_gold_earned + amount,
        },
        synchronize_session="fetch",
    )
    return updated


def grant_xp(db: Session, user_id: str, amount: int) -> dict:
    """
    Suma XP y sube de nivel si toca.

    Retorna:
      {
        "xp_earned": 50,
        "leveled_up": True,
        "new_level": 3
      }
    """
    if amount < 0:
        raise ValueError("grant_xp only accepts non-negative amounts")

    db.query(Profile).filter(Profile.id == user_id).update(
        {
            Profile.xp: Profile.xp + amount,
            Profile.total_xp_earned: Profile.total_xp_earned + amount,
        },
        synchronize_session="fetch",
    )

    profile = get_profile(db, user_id)
    if profile is None:
        return {"xp_earned": 0, "leveled_up": False}

    old_level = profile.level
    new_level = calculate_level(profile.xp)
    leveled_up = new_level > old_level
    if leveled_up:
        profile.level = new_level
        profile.xp_for_next_level = xp_for_next_level(new_level)
        logger.info(f"⬆️ {profile.username} sube a nivel {new_level}")
    db.flush()

    result = {"xp_earned": amount, "leveled_up": leveled_up}
    if leveled_up:
        result["new_level"] = new_level
    return result
