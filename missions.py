"""
=============================================================================
MISSIONS.PY — Motor de Misiones
=============================================================================
Gestiona:
  - Reconciliación   (reconcile_all)        → pone cada misión en su valor real
  - Activar cadenas  (on_mission_completed) → desbloquea las misiones hijas
  - Reclamar         (claim)                → paga oro + XP, una sola vez
  - Inicializar      (initialize_for_user)  → misiones raíz de una cuenta nueva
  - Incrementos      (bump_progress, record_pokemon_added)

Reglas que nunca se rompen:
  1. current_value = min(estadística global, umbral). Nunca más.
  2. Los estados solo avanzan: locked → active → completed.
  3. Llegar al umbral NO completa la misión. Solo el claim completa.
  4. Una misión hija solo se activa si su padre está completed.
  5. Al activarse, una misión arranca con lo que el jugador YA llevaba
     (progreso continuo), no desde 0.

La reconciliación es idempotente: recalcula desde la verdad en vez de
sumar a ciegas, así que se puede llamar tantas veces como se quiera.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import progress_store
from catalog import MissionCatalog
from errors import (
    MissionIncomplete, MissionLocked, MissionNotActive, MissionNotFound,
    ProfileNotFound, TransientLookupFailure
)
from models import MissionProgress, MissionStatus
from progression import grant_gold, grant_xp
from schemas import (
    ClaimResult, MissionDefinition, MissionProgressResponse, MissionWithProgress,
    ReconcileSummary
)
from stats import bump_global_stat, generation_for_pokedex_id, refresh_global_stats, resolve

logger = logging.getLogger("umbradex.missions")

LOCKED = MissionStatus.locked.value
ACTIVE = MissionStatus.active.value
COMPLETED = MissionStatus.completed.value

RECONCILE_ATTEMPTS = 2


def clamped_value(db: Session, user_id: str, mission: MissionDefinition) -> int:
    """Valor global del jugador, recortado al umbral de la misión"""
    return min(resolve(db, user_id, mission.requirement_type), mission.requirement_value)


# =============================================================================
# ===================== RECONCILIACIÓN ========================================
# =============================================================================

def reconcile_all(db: Session, user_id: str, catalog: MissionCatalog) -> ReconcileSummary:
    """
    Pone TODAS las misiones del jugador en su estado correcto.

    Para cada misión, según su fila de progreso:
      - completed                    → no se toca (lo ganado, ganado está)
      - active                       → valor = min(global, umbral); el estado no cambia
      - locked y padre completado    → pasa a active con el valor global
      - sin fila y alcanzable        → se crea active con el valor global
      - sin fila y no alcanzable     → nada (se creará cuando toque)

    El orden no importa: cada misión depende solo de las estadísticas
    globales y del estado de SU prerequisito.

    Si otra reconciliación simultánea crea la misma fila antes que nosotros,
    se deshace la pasada y se repite una vez: la segunda ya ve esa fila.
    """
    for attempt in range(1, RECONCILE_ATTEMPTS + 1):
        try:
            summary = _reconcile_pass(db, user_id, catalog)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if attempt == RECONCILE_ATTEMPTS:
                raise TransientLookupFailure(f"Mission reconciliation kept conflicting: {e}") from e
            logger.warning(f"⚠️ Reconciliación concurrente para {user_id}, reintentando")
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Error reconciliando misiones de {user_id}: {e}")
            raise TransientLookupFailure(f"Mission reconciliation failed: {e}") from e
        break

    if summary.writes:
        logger.info(
            f"✅ Misiones reconciliadas para {user_id}: "
            f"{summary.created} creadas, {summary.unlocked} desbloqueadas, {summary.updated} actualizadas"
        )
    return summary


def _reconcile_pass(db: Session, user_id: str, catalog: MissionCatalog) -> ReconcileSummary:
    summary = ReconcileSummary()
    missions = catalog.all(db)
    progress_by_mission = {p.mission_id: p for p in progress_store.get_by_user(db, user_id)}
    completed_ids = {mid for mid, p in progress_by_mission.items() if p.status == COMPLETED}

    # Cada tipo de requisito se resuelve una sola vez por pasada
    resolved: dict[str, int] = {}

    def correct_value(mission: MissionDefinition) -> int:
        if mission.requirement_type not in resolved:
            resolved[mission.requirement_type] = resolve(db, user_id, mission.requirement_type)
        return min(resolved[mission.requirement_type], mission.requirement_value)

    for mission in missions:
        progress = progress_by_mission.get(mission.id)
        should_be_active = mission.is_root or mission.prerequisite_mission_id in completed_ids

        if progress is not None and progress.status == COMPLETED:
            summary.unchanged += 1
            continue

        if progress is not None and progress.status == ACTIVE:
            value = correct_value(mission)
            if progress.current_value != value:
                old_value = progress.current_value
                progress_store.set_value(db, user_id, mission.id, value)
                summary.updated += 1
                logger.debug(f"🔁 {mission.title}: {old_value} → {value}")
            else:
                summary.unchanged += 1
            continue

        if progress is not None and progress.status == LOCKED:
            if should_be_active:
                value = correct_value(mission)
                if progress_store.conditional_transition(db, user_id, mission.id, LOCKED, ACTIVE, value):
                    summary.unlocked += 1
                    logger.info(f"🔓 {mission.title} desbloqueada con progreso {value}")
            else:
                summary.unchanged += 1
            continue

        if should_be_active:
            value = correct_value(mission)
            progress_store.upsert(db, user_id, mission.id, ACTIVE, value)
            summary.created += 1
            logger.info(f"➕ Progreso creado para {mission.title} con valor {value}")

    return summary


def sync_user_stats_and_missions(db: Session, user_id: str, catalog: MissionCatalog) -> ReconcileSummary:
    """Recalcula la caché de estadísticas y después reconcilia todas las misiones"""
    try:
        refresh_global_stats(db, user_id)
        db.commit()
    except SQLAlchemyError as e:
        # La caché es opcional: la reconciliación lee de las tablas reales
        db.rollback()
        logger.warning(f"⚠️ No se pudo recalcular user_global_stats de {user_id}: {e}")
    return reconcile_all(db, user_id, catalog)


# =============================================================================
# ===================== ACTIVAR CADENAS =======================================
# =============================================================================

def on_mission_completed(db: Session, user_id: str, mission_id: int, catalog: MissionCatalog) -> list[int]:
    """
    Activa las misiones cuyo prerequisito es mission_id.

      - sin fila     → se crea active con min(global, umbral)
      - locked       → pasa a active con el mismo valor
      - active/completed → no se toca

    Solo la llama claim(), dentro de SU transacción. No hace commit.
    Devuelve los ids activados.
    """
    activated = []
    for child in catalog.children_of(db, mission_id):
        existing = progress_store.get_one(db, user_id, child.id)

        if existing is None:
            value = clamped_value(db, user_id, child)
            progress_store.upsert(db, user_id, child.id, ACTIVE, value)
            activated.append(child.id)
            logger.info(f"🆕 Siguiente misión activada: {child.title} con progreso {value}/{child.requirement_value}")
        elif existing.status == LOCKED:
            value = clamped_value(db, user_id, child)
            if progress_store.conditional_transition(db, user_id, child.id, LOCKED, ACTIVE, value):
                activated.append(child.id)
                logger.info(f"🔓 Misión desbloqueada: {child.title} con progreso {value}/{child.requirement_value}")
    return activated


# =============================================================================
# ===================== RECLAMAR RECOMPENSA ===================================
# =============================================================================

def claim(db: Session, user_id: str, mission_id: int, catalog: MissionCatalog) -> ClaimResult:
    """
    Reclama la recompensa de una misión.

    Comprobaciones (en este orden):
      1. La misión existe                         → si no, MissionNotFound
      2. Si hay fila: status == active            → si no, MissionNotActive
      3. Si hay fila: current_value >= umbral     → si no, MissionIncomplete
      4. Si NO hay fila: solo vale para misiones raíz → si no, MissionLocked
         y la estadística real debe llegar al umbral → si no, MissionIncomplete

    Todo lo demás va en UNA transacción:
      marcar completed (UPDATE condicional) → oro → XP → activar hijas → commit
    Si algo falla, rollback completo: o se paga todo o no se paga nada.
    """
    try:
        mission = catalog.get(db, mission_id)
        if mission is None:
            raise MissionNotFound(mission_id)
        progress = progress_store.get_one(db, user_id, mission_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise TransientLookupFailure(f"Could not load mission {mission_id}: {e}", mission_id) from e

    if progress is not None:
        if progress.status != ACTIVE:
            raise MissionNotActive(mission_id, progress.status)
        if progress.current_value < mission.requirement_value:
            raise MissionIncomplete(mission_id, progress.current_value, mission.requirement_value)
    elif not mission.is_root:
        raise MissionLocked(mission_id)
    else:
        # Sin fila no hay progreso guardado: se comprueba contra la estadística real
        reached = clamped_value(db, user_id, mission)
        if reached < mission.requirement_value:
            raise MissionIncomplete(mission_id, reached, mission.requirement_value)

    try:
        if progress is not None:
            # Solo una petición puede encontrar la fila todavía en 'active'
            if not progress_store.conditional_transition(
                db, user_id, mission_id, ACTIVE, COMPLETED, min_value=mission.requirement_value
            ):
                # Releer de la BD, no del identity map: otra petición pudo cambiar la fila
                db.expire_all()
                current = progress_store.get_one(db, user_id, mission_id)
                if current is not None and current.status == ACTIVE:
                    raise MissionIncomplete(mission_id, current.current_value, mission.requirement_value)
                raise MissionNotActive(mission_id, current.status if current is not None else COMPLETED)
        else:
            logger.warning(f"⚠️ Creando progreso para la misión raíz {mission_id}")
            now = datetime.utcnow()
            db.add(MissionProgress(
                user_id=user_id,
                mission_id=mission_id,
                status=COMPLETED,
                current_value=reached,
                completed_at=now,
                created_at=now,
                updated_at=now,
            ))
            db.flush()

        if not grant_gold(db, user_id, mission.gold_reward):
            raise ProfileNotFound(user_id)
        xp_result = grant_xp(db, user_id, mission.xp_reward)

        activated = on_mission_completed(db, user_id, mission_id, catalog)
        db.commit()
    except IntegrityError as e:
        # Otra petición insertó la fila de la misión raíz a la vez
        db.rollback()
        logger.warning(f"⚠️ Claim concurrente de la misión {mission_id} para {user_id}: {e}")
        raise MissionNotActive(mission_id, COMPLETED) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error reclamando la misión {mission_id} para {user_id}: {e}")
        raise TransientLookupFailure(f"Failed to claim reward: {e}", mission_id) from e
    except (MissionNotActive, MissionIncomplete, ProfileNotFound):
        db.rollback()
        raise

    logger.info(f"🏆 {user_id} reclamó {mission.title}: {mission.gold_reward} oro y {mission.xp_reward} XP")

    return ClaimResult(
        mission_id=mission_id,
        gold_reward=mission.gold_reward,
        xp_reward=mission.xp_reward,
        next_mission_id=catalog.next_mission_id(db, mission_id),
        activated_mission_ids=activated,
        leveled_up=xp_result.get("leveled_up", False),
        new_level=xp_result.get("new_level"),
    )


# =============================================================================
# ===================== INICIALIZAR ===========================================
# =============================================================================

def initialize_for_user(db: Session, user_id: str, catalog: MissionCatalog) -> int:
    """
    Crea las filas de las misiones raíz de una cuenta nueva.
    Las que ya existen no se tocan. Devuelve cuántas se han creado.
    """
    existing = {p.mission_id for p in progress_store.get_by_user(db, user_id)}
    created = 0
    try:
        for mission in catalog.all(db):
            if not mission.is_root or mission.id in existing:
                continue
            progress_store.upsert(db, user_id, mission.id, ACTIVE, clamped_value(db, user_id, mission))
            created += 1
        db.commit()
    except IntegrityError:
        # Otra inicialización simultánea ya creó las filas
        db.rollback()
        logger.warning(f"⚠️ Inicialización concurrente para {user_id}, se reintenta con reconcile")
        return 0
    except SQLAlchemyError as e:
        db.rollback()
        raise TransientLookupFailure(f"Failed to initialize missions: {e}") from e

    if created:
        logger.info(f"🎯 {created} misiones iniciales creadas para {user_id}")
    return created


# =============================================================================
# ===================== INCREMENTOS DIRECTOS ==================================
# =============================================================================

def bump_progress(
    db: Session,
    user_id: str,
    requirement_type: str,
    catalog: MissionCatalog,
    delta: int = 1,
    commit: bool = True,
) -> int:
    """
    Suma delta a todas las misiones ACTIVAS de un tipo de requisito
    (sin pasar el umbral) y al contador desnormalizado.

    Es el camino rápido para contadores que no se pueden consultar
    fácilmente (p. ej. por tipo). La próxima reconciliación corrige
    cualquier desvío, porque recalcula desde la verdad.
    Devuelve cuántas misiones se actualizaron.
    """
    if delta < 0:
        raise ValueError("bump_progress only accepts non-negative deltas")

    missions = {m.id: m for m in catalog.by_requirement(db, requirement_type)}
    updated = 0
    try:
        bump_global_stat(db, user_id, requirement_type, delta)
        if delta and missions:
            for progress in progress_store.get_active_for_missions(db, user_id, list(missions)):
                mission = missions[progress.mission_id]
                new_value = min(progress.current_value + delta, mission.requirement_value)
                if new_value != progress.current_value:
                    progress_store.set_value(db, user_id, mission.id, new_value)
                    updated += 1
                    logger.debug(f"📈 {mission.title}: {new_value}/{mission.requirement_value}")
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error actualizando progreso de {requirement_type}: {e}")
        raise TransientLookupFailure(f"Failed to update progress: {e}") from e
    return updated


def record_pokemon_added(
    db: Session,
    user_id: str,
    pokedex_id: int,
    types: list[str],
    catalog: MissionCatalog,
) -> dict:
    """
    Evento "Pokémon añadido a la Living Dex".
    Suma 1 a collect_pokemon, a cada collect_type_<tipo> y a collect_gen_<generación>.
    """
    requirement_types = ["collect_pokemon"]
    requirement_types += [f"collect_type_{t}" for t in dict.fromkeys(t.lower() for t in types if t)]
    generation = generation_for_pokedex_id(pokedex_id)
    if generation > 0:
        requirement_types.append(f"collect_gen_{generation}")

    updated = {}
    for requirement_type in requirement_types:
        updated[requirement_type] = bump_progress(
            db, user_id, requirement_type, catalog, delta=1, commit=False
        )
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise TransientLookupFailure(f"Failed to record pokemon: {e}") from e
    logger.info(f"🧬 Pokémon #{pokedex_id} registrado para {user_id}: {requirement_types}")
    return updated


# =============================================================================
# ===================== VISTA COMBINADA =======================================
# =============================================================================

def list_missions_with_progress(
    db: Session,
    user_id: str,
    catalog: MissionCatalog,
    category: Optional[str] = None,
) -> list[MissionWithProgress]:
    """Catálogo + progreso del jugador, con los flags que necesita la app"""
    progress_by_mission = {p.mission_id: p for p in progress_store.get_by_user(db, user_id)}
    completed_ids = {mid for mid, p in progress_by_mission.items() if p.status == COMPLETED}

    result = []
    for mission in catalog.all(db):
        if category is not None and mission.category != category:
            continue
        progress = progress_by_mission.get(mission.id)
        is_completed = progress is not None and progress.status == COMPLETED
        prerequisite_done = mission.is_root or mission.prerequisite_mission_id in completed_ids
        is_locked = not is_completed and (
            (progress is not None and progress.status == LOCKED)
            or (progress is None and not prerequisite_done)
        )
        current = progress.current_value if progress is not None else 0
        if is_completed:
            percentage = 100.0
        elif mission.requirement_value > 0:
            percentage = round(min(current / mission.requirement_value, 1.0) * 100, 1)
        else:
            percentage = 100.0

        result.append(MissionWithProgress(
            mission=mission,
            progress=MissionProgressResponse.model_validate(progress) if progress is not None else None,
            progress_percentage=percentage,
            is_completed=is_completed,
            is_locked=is_locked,
            can_claim=(
                progress is not None
                and progress.status == ACTIVE
                and progress.current_value >= mission.requirement_value
            ),
        ))
    return result
