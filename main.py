"""
=============================================================================
MAIN.PY — La API de Misiones de UmbraDex
=============================================================================
Este archivo define los endpoints de la API REST.

Organización por secciones:
  1. MISSIONS   → catálogo y progreso combinado
  2. SYNC       → inicializar, reconciliar, sincronizar estadísticas
  3. CLAIM      → reclamar recompensas
  4. EVENTS     → incrementos directos (Pokémon añadido, contadores)
  5. PROFILE    → nivel, XP y oro
  6. ADMIN      → refrescar la caché del catálogo

La app llama a /missions/sync cada vez que pasa algo que afecta a
misiones (captura, equipo nuevo, compra, favorito). Es idempotente:
si falla, la siguiente interacción lo vuelve a intentar.
"""

import os
import logging
import traceback
from datetime import datetime
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import get_db, init_db, SessionLocal
from models import Profile
from schemas import (
    BumpProgressRequest, BumpProgressResponse, ClaimResult, LevelInfoResponse,
    MissionDefinition, MissionWithProgress, PokemonAddedRequest, ReconcileSummary
)
from auth import get_admin_user, get_current_user
from catalog import MissionCatalog, seed_missions
from errors import MissionError
from missions import (
    bump_progress, claim, initialize_for_user, list_missions_with_progress,
    reconcile_all, record_pokemon_added, sync_user_stats_and_missions
)
from progression import get_level_info
from stats import load_species_file, seed_species

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("umbradex.api")

SPECIES_FILE = os.getenv("SPECIES_FILE")
# SPECIES_FILE → JSON con la tabla de especies (tipos/generación). Opcional.


# ─────────────────────────────────────────────────────────────────────────────
# LIFESPAN (Arranque y apagado)
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Arranque:
      1. Crear tablas si no existen
      2. Sembrar el catálogo de misiones (y las especies si hay fichero)
      3. Invalidar la caché del catálogo
    """
    logger.info("🚀 Arrancando UmbraDex Missions...")

    init_db()
    logger.info("✅ Base de datos inicializada")

    db = SessionLocal()
    try:
        seed_missions(db)
        if SPECIES_FILE:
            seed_species(db, load_species_file(SPECIES_FILE))
    finally:
        db.close()

    app.state.catalog.invalidate()
    logger.info("🎉 UmbraDex Missions operativo")

    yield

    logger.info("👋 Apagado completo")


# ─────────────────────────────────────────────────────────────────────────────
# APLICACIÓN FASTAPI
# ─────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="UmbraDex Missions API",
    description="Cadenas de misiones, reconciliación de progreso y recompensas",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.catalog = MissionCatalog()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_catalog(request: Request) -> MissionCatalog:
    """Caché del catálogo de esta aplicación"""
    return request.app.state.catalog


# ─────────────────────────────────────────────────────────────────────────────
# ERROR HANDLERS
# ─────────────────────────────────────────────────────────────────────────────
# Los errores de misiones llevan su propio código HTTP y un "code" estable
# para que la app muestre el motivo exacto.

@app.exception_handler(MissionError)
async def mission_error_handler(request: Request, exc: MissionError):
    logger.info(f"🚫 {exc.code} en {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Captura errores no manejados y devuelve detalles útiles"""
    error_msg = str(exc)
    error_trace = traceback.format_exc()
    logger.error(f"❌ Error no manejado en {request.url}: {error_msg}\n{error_trace}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": error_msg,
            "type": type(exc).__name__,
            "path": str(request.url)
        }
    )


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@app.get("/", tags=["Health"])
def health_check():
    """Verifica que la API está viva"""
    return {
        "status": "ok",
        "app": "UmbraDex Missions",
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat()
    }


# =============================================================================
# ===================== SECCIÓN 1: MISSIONS ===================================
# =============================================================================

@app.get("/missions", response_model=list[MissionDefinition], tags=["Missions"])
def list_missions(db: Session = Depends(get_db), catalog: MissionCatalog = Depends(get_catalog)):
    """Catálogo completo, ordenado por sort_order"""
    return catalog.all(db)


@app.get("/missions/progress", response_model=list[MissionWithProgress], tags=["Missions"])
def get_missions_progress(
    category: Optional[str] = Query(default=None),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Cada misión con el progreso del jugador (activa, completada o bloqueada)"""
    return list_missions_with_progress(db, user.id, catalog, category)


# =============================================================================
# ===================== SECCIÓN 2: SYNC =======================================
# =============================================================================

@app.post("/missions/initialize", tags=["Sync"])
def initialize_missions(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Crea las misiones raíz de una cuenta nueva (no toca las existentes)"""
    created = initialize_for_user(db, user.id, catalog)
    return {"created": created}


@app.post("/missions/reconcile", response_model=ReconcileSummary, tags=["Sync"])
def reconcile_missions(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Recalcula todas las misiones desde las estadísticas reales"""
    return reconcile_all(db, user.id, catalog)


@app.post("/missions/sync", response_model=ReconcileSummary, tags=["Sync"])
def sync_missions(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Recalcula user_global_stats y después reconcilia todas las misiones"""
    return sync_user_stats_and_missions(db, user.id, catalog)


# =============================================================================
# ===================== SECCIÓN 3: CLAIM ======================================
# =============================================================================

@app.post("/missions/{mission_id}/claim", response_model=ClaimResult, tags=["Claim"])
def claim_mission(
    mission_id: int,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """
    Reclama la recompensa de una misión completada.
    Errores: 404 no existe, 403 bloqueada, 409 ya reclamada o incompleta,
    503 fallo temporal (reintentar).
    """
    return claim(db, user.id, mission_id, catalog)


# =============================================================================
# ===================== SECCIÓN 4: EVENTS =====================================
# =============================================================================

@app.post("/missions/progress/bump", response_model=BumpProgressResponse, tags=["Events"])
def bump_mission_progress(
    data: BumpProgressRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Incremento directo de las misiones activas de un tipo de requisito"""
    updated = bump_progress(db, user.id, data.requirement_type, catalog, delta=data.delta)
    return BumpProgressResponse(requirement_type=data.requirement_type, missions_updated=updated)


@app.post("/missions/events/pokemon-added", tags=["Events"])
def pokemon_added(
    data: PokemonAddedRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Un Pokémon entró en la Living Dex: suma en colección, tipos y generación"""
    updated = record_pokemon_added(db, user.id, data.pokedex_id, data.types, catalog)
    return {"pokedex_id": data.pokedex_id, "missions_updated": updated}


# =============================================================================
# ===================== SECCIÓN 5: PROFILE ====================================
# =============================================================================

@app.get("/profile/level", response_model=LevelInfoResponse, tags=["Profile"])
def get_my_level(user: Profile = Depends(get_current_user)):
    """Nivel, XP y oro del jugador"""
    return get_level_info(user)


# =============================================================================
# ===================== SECCIÓN 6: ADMIN ======================================
# =============================================================================

@app.post("/missions/catalog/refresh", tags=["Admin"])
def refresh_catalog(
    user: Profile = Depends(get_admin_user),
    db: Session = Depends(get_db),
    catalog: MissionCatalog = Depends(get_catalog),
):
    """Vacía la caché del catálogo y la vuelve a cargar (solo ADMIN_USER_IDS)"""
    catalog.invalidate()
    return {"missions": len(catalog.all(db))}
