import pytest

import progress_store
from conftest import USER_ID, add_pokemon
from missions import (
    bump_progress, claim, list_missions_with_progress, reconcile_all, record_pokemon_added
)
from models import UserGlobalStats


def _progress(db, mission_id):
    db.expire_all()
    return progress_store.get_one(db, USER_ID, mission_id)


def test_bump_progress_clamps_active_missions(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 1, "active", 3)
    db.commit()

    assert bump_progress(db, USER_ID, "collect_pokemon", catalog, delta=4) == 1
    assert _progress(db, 1).current_value == 5

    # Ya en el umbral: nada que actualizar
    assert bump_progress(db, USER_ID, "collect_pokemon", catalog) == 0


def test_bump_progress_ignores_completed_and_missing(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 60, "completed", 3)
    db.commit()

    assert bump_progress(db, USER_ID, "collect_type_fire", catalog) == 0
    assert _progress(db, 60).current_value == 3
    assert _progress(db, 64) is None


def test_bump_progress_rejects_negative_delta(db, catalog, profile):
    with pytest.raises(ValueError):
        bump_progress(db, USER_ID, "collect_pokemon", catalog, delta=-1)


def test_record_pokemon_added(db, catalog, profile):
    reconcile_all(db, USER_ID, catalog)

    updated = record_pokemon_added(db, USER_ID, 6, ["Fire", "Flying", "fire"], catalog)

    assert updated == {
        "collect_pokemon": 1,
        "collect_type_fire": 1,
        "collect_type_flying": 0,
        "collect_gen_1": 1,
    }
    assert _progress(db, 1).current_value == 1
    assert _progress(db, 60).current_value == 1
    assert _progress(db, 70).current_value == 1

    stats = db.query(UserGlobalStats).filter(UserGlobalStats.user_id == USER_ID).one()
    assert stats.total_pokemon_collected == 1
    assert stats.type_counts == {"fire": 1, "flying": 1}
    assert stats.gen_counts == {"1": 1}


def test_reconcile_corrects_bump_drift(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 1, "active", 0)
    db.commit()
    bump_progress(db, USER_ID, "collect_pokemon", catalog, delta=4)
    add_pokemon(db, USER_ID, [1, 2])

    reconcile_all(db, USER_ID, catalog)

    assert _progress(db, 1).current_value == 2


def test_list_missions_with_progress(db, catalog, profile):
    add_pokemon(db, USER_ID, range(1, 8))
    reconcile_all(db, USER_ID, catalog)
    claim(db, USER_ID, 1, catalog)

    view = {entry.mission.id: entry for entry in list_missions_with_progress(db, USER_ID, catalog)}

    assert view[1].is_completed
    assert view[1].progress_percentage == 100.0
    assert not view[1].can_claim
    assert view[2].progress_percentage == 70.0
    assert not view[2].is_locked
    assert view[3].is_locked
    assert view[3].progress is None
    assert view[70].can_claim is False


def test_list_missions_filters_by_category(db, catalog, profile):
    view = list_missions_with_progress(db, USER_ID, catalog, category="shop")

    assert {entry.mission.id for entry in view} == {50, 51, 52, 53, 54, 55, 56}
    assert all(entry.mission.category == "shop" for entry in view)
