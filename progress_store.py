"""
=============================================================================
PROGRESS_STORE.PY — Filas de progreso (missions_progress)
=============================================================================
Acceso a la tabla missions_progress. Nada más.

Reglas:
  - Los estados solo avanzan: locked → active → completed.
  - conditional_transition es la ÚNICA forma de cambiar un estado, y lo
    hace con un UPDATE ... WHERE status = :from_status. Si otra petición
    llegó antes, el UPDATE no toca ninguna fila y devuelve False.
  - Aquí nunca se hace commit: la operación que llama es dueña de la transacción.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session
from models import MissionProgress, MissionStatus

ALLOWED_TRANSITIONS = {
    (MissionStatus.locked.value, MissionStatus.active.value),
    (MissionStatus.active.value, MissionStatus.completed.value),
}


def get_by_user(db: Session, user_id: str) -> list[MissionProgress]:
    return db.query(MissionProgress).filter(MissionProgress.user_id == user_id).all()


def get_one(db: Session, user_id: str, mission_id: int) -> Optional[MissionProgress]:
    return db.query(MissionProgress).filter(
        MissionProgress.user_id == user_id,
        MissionProgress.mission_id == mission_id
    ).first()


def get_active_for_missions(db: Session, user_id: str, mission_ids: list[int]) -> list[MissionProgress]:
    if not mission_ids:
        return []
    return db.query(MissionProgress).filter(
        MissionProgress.user_id == user_id,
        MissionProgress.mission_id.in_(mission_ids),
        MissionProgress.status == MissionStatus.active.value
    ).all()


def upsert(db: Session, user_id: str, mission_id: int, status: str, current_value: int) -> MissionProgress:
    """
    Crea la fila si no existe. Si existe, actualiza el valor y, si el nuevo
    estado es un avance permitido, también el estado.
    Un estado que retrocede se ignora (completed nunca vuelve a active).
    """
    status = MissionStatus(status).value
    now = datetime.utcnow()
    progress = get_one(db, user_id, mission_id)

    if progress is None:
        progress = MissionProgress(
            user_id=user_id,
            mission_id=mission_id,
            status=status,
            current_value=current_value,
            completed_at=now if status == MissionStatus.completed.value else None,
            created_at=now,
            updated_at=now,
        )
        db.add(progress)
        db.flush()
        return progress

    if progress.status == MissionStatus.completed.value:
        return progress

    if (progress.status, status) in ALLOWED_TRANSITIONS:
        progress.status = status
        if status == MissionStatus.completed.value:
            progress.completed_at = now
    progress.current_value = current_value
    progress.updated_at = now
    db.flush()
    return progress


def set_value(db: Session, user_id: str, mission_id: int, current_value: int) -> bool:
    """Actualiza el valor de una misión ACTIVA. No toca el estado."""
    updated = db.query(MissionProgress).filter(
        MissionProgress.user_id == user_id,
        MissionProgress.mission_id == mission_id,
        MissionProgress.status == MissionStatus.active.value
    ).update(
        {
            MissionProgress.current_value: current_value,
            MissionProgress.updated_at: datetime.utcnow(),
        },
        synchronize_session="fetch",
    )
    return updated == 1


def conditional_transition(
    db: Session,
    user_id: str,
    mission_id: int,
    from_status: str,
    to_status: str,
    new_value: Optional[int] = None,
    min_value: Optional[int] = None,
) -> bool:
    """
    Cambia el estado SOLO si la fila sigue en from_status
    (y, si se pide, si current_value >= min_value).
    Devuelve True si exactamente una fila cambió.

    Es lo que garantiza que un claim se paga como mucho una vez:
    dos claims simultáneos hacen el mismo UPDATE, pero solo el primero
    encuentra status = 'active'.
    """
    from_status = MissionStatus(from_status).value
    to_status = MissionStatus(to_status).value
    if (from_status, to_status) not in ALLOWED_TRANSITIONS:
        raise ValueError(f"Invalid mission status transition: {from_status} -> {to_status}")

    now = datetime.utcnow()
    values = {
        MissionProgress.status: to_status,
        MissionProgress.updated_at: now,
    }
    if new_value is not None:
        values[MissionProgress.current_value] = new_value
    if to_status == MissionStatus.completed.value:
        values[MissionProgress.completed_at] = now

    query = db.query(MissionProgress).filter(
        MissionProgress.user_id == user_id,
        MissionProgress.mission_id == mission_id,
        MissionProgress.status == from_status
    )
    if min_value is not None:
        query = query.filter(MissionProgress.current_value >= min_value)
    updated = query.update(values, synchronize_session="fetch")
    return updated == 1
