"""
=============================================================================
CATALOG.PY — Catálogo de Misiones
=============================================================================
Gestiona:
  - Los tipos de requisito (RequirementKind) y cómo se leen de un texto
  - Las misiones que vienen de serie (MISSION_DEFINITIONS)
  - La caché del catálogo (MissionCatalog)

Cadenas:
  Cada misión tiene como mucho UN prerequisito. Las misiones sin
  prerequisito son "raíz" y están activas desde el principio; el resto
  se activa cuando su padre se reclama.

  collect_pokemon 5 ──→ collect_pokemon 10 ──→ collect_pokemon 25 ──→ ...

La caché NO es estado global: la app crea un MissionCatalog, lo guarda en
app.state y lo invalida cuando el catálogo se vuelve a sembrar.
"""

import enum
import logging
import threading
from typing import Optional

from sqlalchemy.orm import Session
from models import Mission
from schemas import MissionDefinition

logger = logging.getLogger("umbradex.catalog")


# =============================================================================
# ===================== TIPOS DE REQUISITO ====================================
# =============================================================================

class RequirementKind(str, enum.Enum):
    """Qué estadística del jugador mide una misión"""
    reach_level = "reach_level"
    earn_gold = "earn_gold"
    collect_pokemon = "collect_pokemon"
    favorite_count = "favorite_count"
    create_team = "create_team"
    shop_buy = "shop_buy"
    own_skins = "own_skins"
    own_badges = "own_badges"
    own_themes = "own_themes"
    own_name_colors = "own_name_colors"
    own_titles = "own_titles"
    collect_type = "collect_type_"
    collect_gen = "collect_gen_"
    # Los dos últimos son PREFIJOS: collect_type_fire, collect_gen_3


PARAMETRIZED_KINDS = (RequirementKind.collect_type, RequirementKind.collect_gen)


def parse_requirement(requirement_type: str) -> Optional[tuple[RequirementKind, Optional[str]]]:
    """
    Convierte el texto de la BD en (tipo, argumento).

      "collect_pokemon"   → (RequirementKind.collect_pokemon, None)
      "collect_type_fire" → (RequirementKind.collect_type, "fire")
      "collect_gen_3"     → (RequirementKind.collect_gen, "3")
      "lo_que_sea"        → None
    """
    if not requirement_type:
        return None

    for kind in PARAMETRIZED_KINDS:
        if requirement_type.startswith(kind.value):
            argument = requirement_type[len(kind.value):].lower()
            if not argument:
                return None
            if kind is RequirementKind.collect_gen and not argument.isdigit():
                return None
            return kind, argument

    try:
        return RequirementKind(requirement_type), None
    except ValueError:
        return None


# =============================================================================
# ===================== MISIONES DE SERIE =====================================
# =============================================================================
# id fijos: los prerequisitos apuntan a ellos.

MISSION_DEFINITIONS = [
    # ── Colección ──
    {"id": 1, "title": "First Steps", "description": "Collect 5 Pokémon", "category": "collection",
     "requirement_type": "collect_pokemon", "requirement_value": 5, "gold": 100, "xp": 50, "prerequisite": None},
    {"id": 2, "title": "Growing Dex", "description": "Collect 10 Pokémon", "category": "collection",
     "requirement_type": "collect_pokemon", "requirement_value": 10, "gold": 150, "xp": 75, "prerequisite": 1},
    {"id": 3, "title": "Dedicated Trainer", "description": "Collect 25 Pokémon", "category": "collection",
     "requirement_type": "collect_pokemon", "requirement_value": 25, "gold": 300, "xp": 150, "prerequisite": 2},
    {"id": 4, "title": "Pokémon Researcher", "description": "Collect 50 Pokémon", "category": "collection",
     "requirement_type": "collect_pokemon", "requirement_value": 50, "gold": 500, "xp": 250, "prerequisite": 3},
    {"id": 5, "title": "Living Dex Master", "description": "Collect 100 Pokémon", "category": "collection",
     "requirement_type": "collect_pokemon", "requirement_value": 100, "gold": 1000, "xp": 500, "prerequisite": 4},

    # ── Niveles ──
    {"id": 10, "title": "Rising Star", "description": "Reach level 5", "category": "progression",
     "requirement_type": "reach_level", "requirement_value": 5, "gold": 200, "xp": 0, "prerequisite": None},
    {"id": 11, "title": "Veteran", "description": "Reach level 10", "category": "progression",
     "requirement_type": "reach_level", "requirement_value": 10, "gold": 400, "xp": 0, "prerequisite": 10},
    {"id": 12, "title": "Champion", "description": "Reach level 20", "category": "progression",
     "requirement_type": "reach_level", "requirement_value": 20, "gold": 800, "xp": 0, "prerequisite": 11},

    # ── Oro ──
    {"id": 20, "title": "Pocket Money", "description": "Earn 500 gold", "category": "progression",
     "requirement_type": "earn_gold", "requirement_value": 500, "gold": 50, "xp": 50, "prerequisite": None},
    {"id": 21, "title": "Treasure Hunter", "description": "Earn 2000 gold", "category": "progression",
     "requirement_type": "earn_gold", "requirement_value": 2000, "gold": 200, "xp": 100, "prerequisite": 20},
    {"id": 22, "title": "Tycoon", "description": "Earn 10000 gold", "category": "progression",
     "requirement_type": "earn_gold", "requirement_value": 10000, "gold": 500, "xp": 300, "prerequisite": 21},

    # ── Social ──
    {"id": 30, "title": "Best Buddy", "description": "Mark a Pokémon as favorite", "category": "social",
     "requirement_type": "favorite_count", "requirement_value": 1, "gold": 25, "xp": 20, "prerequisite": None},
    {"id": 31, "title": "Fan Club", "description": "Have 5 favorite Pokémon", "category": "social",
     "requirement_type": "favorite_count", "requirement_value": 5, "gold": 75, "xp": 50, "prerequisite": 30},
    {"id": 40, "title": "Team Builder", "description": "Create a team", "category": "social",
     "requirement_type": "create_team", "requirement_value": 1, "gold": 50, "xp": 30, "prerequisite": None},
    {"id": 41, "title": "Strategist", "description": "Create 3 teams", "category": "social",
     "requirement_type": "create_team", "requirement_value": 3, "gold": 150, "xp": 80, "prerequisite": 40},

    # ── Tienda ──
    {"id": 50, "title": "First Purchase", "description": "Buy an item in the shop", "category": "shop",
     "requirement_type": "shop_buy", "requirement_value": 1, "gold": 50, "xp": 25, "prerequisite": None},
    {"id": 51, "title": "Shopaholic", "description": "Buy 5 items in the shop", "category": "shop",
     "requirement_type": "shop_buy", "requirement_value": 5, "gold": 150, "xp": 75, "prerequisite": 50},
    {"id": 52, "title": "Fashionista", "description": "Own 3 skins", "category": "shop",
     "requirement_type": "own_skins", "requirement_value": 3, "gold": 100, "xp": 50, "prerequisite": 50},
    {"id": 53, "title": "Interior Designer", "description": "Own 2 themes", "category": "shop",
     "requirement_type": "own_themes", "requirement_value": 2, "gold": 100, "xp": 50, "prerequisite": 50},
    {"id": 54, "title": "Badge Collector", "description": "Own 3 badges", "category": "shop",
     "requirement_type": "own_badges", "requirement_value": 3, "gold": 100, "xp": 50, "prerequisite": 51},
    {"id": 55, "title": "Colorful Name", "description": "Own 2 name colors", "category": "shop",
     "requirement_type": "own_name_colors", "requirement_value": 2, "gold": 100, "xp": 50, "prerequisite": 51},
    {"id": 56, "title": "Titled", "description": "Own 2 titles", "category": "shop",
     "requirement_type": "own_titles", "requirement_value": 2, "gold": 100, "xp": 50, "prerequisite": 51},

    # ── Tipos ──
    {"id": 60, "title": "Kindling", "description": "Collect 3 Fire-type Pokémon", "category": "types",
     "requirement_type": "collect_type_fire", "requirement_value": 3, "gold": 75, "xp": 40, "prerequisite": None},
    {"id": 61, "title": "Making Waves", "description": "Collect 3 Water-type Pokémon", "category": "types",
     "requirement_type": "collect_type_water", "requirement_value": 3, "gold": 75, "xp": 40, "prerequisite": None},
    {"id": 62, "title": "Green Thumb", "description": "Collect 3 Grass-type Pokémon", "category": "types",
     "requirement_type": "collect_type_grass", "requirement_value": 3, "gold": 75, "xp": 40, "prerequisite": None},
    {"id": 63, "title": "Live Wire", "description": "Collect 3 Electric-type Pokémon", "category": "types",
     "requirement_type": "collect_type_electric", "requirement_value": 3, "gold": 75, "xp": 40, "prerequisite": 1},
    {"id": 64, "title": "Wildfire", "description": "Collect 10 Fire-type Pokémon", "category": "types",
     "requirement_type": "collect_type_fire", "requirement_value": 10, "gold": 200, "xp": 100, "prerequisite": 60},

    # ── Generaciones ──
    {"id": 70, "title": "Kanto Explorer", "description": "Collect 10 Generation I Pokémon", "category": "generations",
     "requirement_type": "collect_gen_1", "requirement_value": 10, "gold": 100, "xp": 60, "prerequisite": None},
    {"id": 71, "title": "Kanto Professor", "description": "Collect 50 Generation I Pokémon", "category": "generations",
     "requirement_type": "collect_gen_1", "requirement_value": 50, "gold": 400, "xp": 200, "prerequisite": 70},
    {"id": 72, "title": "Johto Explorer", "description": "Collect 10 Generation II Pokémon", "category": "generations",
     "requirement_type": "collect_gen_2", "requirement_value": 10, "gold": 100, "xp": 60, "prerequisite": 70},
]


def seed_missions(db: Session, definitions: Optional[list[dict]] = None) -> int:
    """
    Inserta las misiones en la BD si no existen.
    Las que ya existen no se tocan. Devuelve cuántas se han creado.
    """
    definitions = MISSION_DEFINITIONS if definitions is None else definitions
    existing_ids = {row.id for row in db.query(Mission.id).all()}

    created = 0
    # Orden de inserción: padres antes que hijos (la FK lo exige en PostgreSQL)
    for position, mission_def in enumerate(_parents_first(definitions)):
        if mission_def["id"] in existing_ids:
            continue
        db.add(Mission(
            id=mission_def["id"],
            title=mission_def["title"],
            description=mission_def.get("description"),
            category=mission_def.get("category", "collection"),
            requirement_type=mission_def["requirement_type"],
            requirement_value=mission_def["requirement_value"],
            gold_reward=mission_def.get("gold", 0),
            xp_reward=mission_def.get("xp", 0),
            prerequisite_mission_id=mission_def.get("prerequisite"),
            sort_order=mission_def.get("sort_order", position),
        ))
        db.flush()
        created += 1
    db.commit()
    logger.info(f"✅ {len(definitions)} misiones verificadas en BD ({created} nuevas)")
    return created


def _parents_first(definitions: list[dict]) -> list[dict]:
    by_id = {d["id"]: d for d in definitions}
    ordered = []
    seen = set()

    def visit(mission_def):
        if mission_def["id"] in seen:
            return
        seen.add(mission_def["id"])
        parent = by_id.get(mission_def.get("prerequisite"))
        if parent is not None:
            visit(parent)
        ordered.append(mission_def)

    for mission_def in definitions:
        visit(mission_def)
    return ordered


# =============================================================================
# ===================== CACHÉ DEL CATÁLOGO ====================================
# =============================================================================

class MissionCatalog:
    """
    Caché explícita del catálogo de misiones.

    Se carga la primera vez que alguien la pide y se mantiene hasta que
    se llama a invalidate(). Guarda MissionDefinition (inmutables), así
    que se puede compartir entre sesiones sin problemas.

    Cada lectura trabaja sobre una instantánea (missions, by_id, children):
    un invalidate() a mitad de la lectura no la deja a medias.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[tuple] = None

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def all(self, db: Session) -> list[MissionDefinition]:
        """Todas las misiones, ordenadas por sort_order"""
        missions, _, _ = self._ensure_loaded(db)
        return list(missions)

    def get(self, db: Session, mission_id: int) -> Optional[MissionDefinition]:
        _, by_id, _ = self._ensure_loaded(db)
        return by_id.get(mission_id)

    def children_of(self, db: Session, mission_id: int) -> list[MissionDefinition]:
        """Misiones cuyo prerequisito es mission_id"""
        _, _, children = self._ensure_loaded(db)
        return list(children.get(mission_id, []))

    def next_mission_id(self, db: Session, mission_id: int) -> Optional[int]:
        children = self.children_of(db, mission_id)
        return children[0].id if children else None

    def by_requirement(self, db: Session, requirement_type: str) -> list[MissionDefinition]:
        missions, _, _ = self._ensure_loaded(db)
        return [m for m in missions if m.requirement_type == requirement_type]

    def invalidate(self):
        with self._lock:
            self._snapshot = None
        logger.info("🔄 Caché del catálogo invalidada")

    def _ensure_loaded(self, db: Session) -> tuple:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is not None:
                return self._snapshot
            rows = db.query(Mission).order_by(Mission.sort_order, Mission.id).all()
            missions = tuple(MissionDefinition.model_validate(row) for row in rows)

            children: dict[int, list[MissionDefinition]] = {}
            for mission in missions:
                if mission.prerequisite_mission_id is not None:
                    children.setdefault(mission.prerequisite_mission_id, []).append(mission)

            self._snapshot = (missions, {m.id: m for m in missions}, children)
            logger.info(f"📚 Catálogo cargado: {len(missions)} misiones")
            return self._snapshot
