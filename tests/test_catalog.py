from catalog import MISSION_DEFINITIONS, MissionCatalog, RequirementKind, parse_requirement, seed_missions
from models import Mission


def test_parse_plain_requirement():
    assert parse_requirement("collect_pokemon") == (RequirementKind.collect_pokemon, None)
    assert parse_requirement("own_name_colors") == (RequirementKind.own_name_colors, None)


def test_parse_parametrized_requirement():
    assert parse_requirement("collect_type_Fire") == (RequirementKind.collect_type, "fire")
    assert parse_requirement("collect_gen_3") == (RequirementKind.collect_gen, "3")


def test_parse_unknown_requirement():
    assert parse_requirement("lo_que_sea") is None
    assert parse_requirement("") is None
    assert parse_requirement("collect_type_") is None
    assert parse_requirement("collect_gen_kanto") is None


def test_seed_is_idempotent(db):
    created = seed_missions(db)
    assert created == len(MISSION_DEFINITIONS)
    assert seed_missions(db) == 0
    assert db.query(Mission).count() == len(MISSION_DEFINITIONS)


def test_seed_inserts_parents_before_children(db):
    definitions = [
        {"id": 101, "title": "Child", "requirement_type": "collect_pokemon",
         "requirement_value": 2, "prerequisite": 100},
        {"id": 100, "title": "Parent", "requirement_type": "collect_pokemon",
         "requirement_value": 1, "prerequisite": None},
    ]
    seed_missions(db, definitions)

    catalog = MissionCatalog()
    assert [m.id for m in catalog.all(db)] == [100, 101]
    assert catalog.get(db, 101).prerequisite_mission_id == 100


def test_catalog_children_and_next(db, catalog):
    children = [m.id for m in catalog.children_of(db, 1)]
    assert children == [2, 63]
    assert catalog.next_mission_id(db, 1) == 2
    assert catalog.next_mission_id(db, 5) is None
    assert catalog.get(db, 999) is None


def test_catalog_by_requirement(db, catalog):
    assert [m.id for m in catalog.by_requirement(db, "collect_type_fire")] == [60, 64]


def test_catalog_is_cached_until_invalidated(db, catalog):
    assert not catalog.loaded
    assert len(catalog.all(db)) == len(MISSION_DEFINITIONS)
    assert catalog.loaded

    seed_missions(db, [{"id": 500, "title": "Extra", "requirement_type": "shop_buy",
                        "requirement_value": 10, "prerequisite": None}])
    assert catalog.get(db, 500) is None

    catalog.invalidate()
    assert not catalog.loaded
    assert catalog.get(db, 500).title == "Extra"


def test_catalog_reads_survive_concurrent_invalidate(db, catalog, monkeypatch):
    load = catalog._ensure_loaded

    def load_then_invalidate(db):
        # Otro hilo invalida justo después de cargar
        snapshot = load(db)
        catalog.invalidate()
        return snapshot

    monkeypatch.setattr(catalog, "_ensure_loaded", load_then_invalidate)

    assert len(catalog.all(db)) == len(MISSION_DEFINITIONS)
    assert [m.id for m in catalog.by_requirement(db, "collect_type_fire")] == [60, 64]
    assert catalog.next_mission_id(db, 1) == 2
