"""
=============================================================================
SCHEMAS.PY — Esquemas de Validación (Pydantic)
=============================================================================
  - Models (SQLAlchemy) → definen las TABLAS de la BD
  - Schemas (Pydantic) → definen qué DATOS acepta/devuelve la API
                         y los objetos de valor del motor de misiones

Convención de nombres:
  XxxRequest  → lo que envía la app (POST)
  XxxResponse → lo que devuelve la API (GET)
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


# =============================================================================
# ===================== CATÁLOGO ==============================================
# =============================================================================

class MissionDefinition(BaseModel):
    """
    Definición inmutable de una misión.
    El catálogo en caché guarda estos objetos (no filas ORM) para que
    sobrevivan a commits y rollbacks de cualquier sesión.
    """
    id: int
    title: str
    description: Optional[str] = None
    category: str = "collection"
    requirement_type: str
    requirement_value: int = Field(ge=0)
    gold_reward: int = 0
    xp_reward: int = 0
    prerequisite_mission_id: Optional[int] = None
    sort_order: int = 0
    model_config = {"from_attributes": True, "frozen": True}

    @property
    def is_root(self) -> bool:
        return self.prerequisite_mission_id is None


# =============================================================================
# ===================== PROGRESO ==============================================
# =============================================================================

class MissionProgressResponse(BaseModel):
    user_id: str
    mission_id: int
    status: str
    current_value: int
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class MissionWithProgress(BaseModel):
    """Misión + progreso del usuario, lista para pintar en la app"""
    mission: MissionDefinition
    progress: Optional[MissionProgressResponse] = None
    progress_percentage: float
    is_completed: bool
    is_locked: bool
    can_claim: bool
    # can_claim → status == active y current_value >= requirement_value


# =============================================================================
# ===================== RESULTADOS DEL MOTOR ==================================
# =============================================================================

class ClaimResult(BaseModel):
    """Resultado de un claim correcto. No se persiste."""
    mission_id: int
    gold_reward: int
    xp_reward: int
    next_mission_id: Optional[int] = None
    activated_mission_ids: list[int] = []
    leveled_up: bool = False
    new_level: Optional[int] = None


class ReconcileSummary(BaseModel):
    """Cuántas filas tocó una pasada de reconciliación"""
    created: int = 0
    unlocked: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.unlocked + self.updated


# =============================================================================
# ===================== PETICIONES ============================================
# =============================================================================

class BumpProgressRequest(BaseModel):
    requirement_type: str = Field(min_length=1, max_length=50)
    delta: int = Field(default=1, ge=0)


class PokemonAddedRequest(BaseModel):
    pokedex_id: int = Field(ge=1)
    types: list[str] = []


class BumpProgressResponse(BaseModel):
    requirement_type: str
    missions_updated: int


class LevelInfoResponse(BaseModel):
    level: int
    xp: int
    xp_in_level: int
    xp_next_level: int
    xp_progress: float
    gold: int
    total_gold_earned: int
