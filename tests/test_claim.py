from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

import missions
import progress_store
from conftest import USER_ID, add_favorites, add_pokemon
from database import SessionLocal
from errors import (
    MissionIncomplete, MissionLocked, MissionNotActive, MissionNotFound, ProfileNotFound,
    TransientLookupFailure
)
from missions import claim, reconcile_all
from models import MissionProgress, Profile


def _progress(db, mission_id, user_id=USER_ID):
    db.expire_all()
    return progress_store.get_one(db, user_id, mission_id)


def _profile(db):
    db.expire_all()
    return db.query(Profile).filter(Profile.id == USER_ID).one()


@pytest.fixture
def ready_to_claim(db, catalog, profile):
    """Escenario A: misión 1 activa y llena (7 Pokémon, umbral 5)"""
    progress_store.upsert(db, USER_ID, 1, "active", 3)
    db.commit()
    add_pokemon(db, USER_ID, range(1, 8))
    reconcile_all(db, USER_ID, catalog)
    return catalog


def test_claim_grants_reward_and_completes(db, ready_to_claim):
    """Escenario B"""
    result = claim(db, USER_ID, 1, ready_to_claim)

    assert result.mission_id == 1
    assert result.gold_reward == 100
    assert result.xp_reward == 50
    assert result.next_mission_id == 2

    progress = _progress(db, 1)
    assert progress.status == "completed"
    assert progress.completed_at is not None

    player = _profile(db)
    assert player.gold == 100
    assert player.total_gold_earned == 100
    assert player.xp == 50


def test_claim_activates_children_with_current_progress(db, ready_to_claim):
    """Escenario C: la misión 2 arranca en min(7, 10) = 7"""
    result = claim(db, USER_ID, 1, ready_to_claim)

    assert result.activated_mission_ids == [2, 63]
    child = _progress(db, 2)
    assert child.status == "active"
    assert child.current_value == 7
    assert _progress(db, 63).current_value == 0


def test_claim_incomplete_changes_nothing(db, ready_to_claim):
    """Escenario D"""
    claim(db, USER_ID, 1, ready_to_claim)
    gold_before = _profile(db).gold

    with pytest.raises(MissionIncomplete) as exc_info:
        claim(db, USER_ID, 2, ready_to_claim)

    assert exc_info.value.current_value == 7
    assert exc_info.value.required_value == 10
    assert _progress(db, 2).status == "active"
    assert _profile(db).gold == gold_before


def test_claim_twice_is_rejected(db, ready_to_claim):
    """Escenario E"""
    claim(db, USER_ID, 1, ready_to_claim)

    with pytest.raises(MissionNotActive):
        claim(db, USER_ID, 1, ready_to_claim)

    player = _profile(db)
    assert player.gold == 100
    assert player.xp == 50


def test_claim_unknown_mission(db, catalog, profile):
    with pytest.raises(MissionNotFound):
        claim(db, USER_ID, 999, catalog)


def test_claim_child_without_row_is_locked(db, catalog, profile):
    with pytest.raises(MissionLocked):
        claim(db, USER_ID, 2, catalog)


def test_claim_locked_row_is_not_active(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 2, "locked", 10)
    db.commit()

    with pytest.raises(MissionNotActive):
        claim(db, USER_ID, 2, catalog)


def test_claim_root_without_row_completes_it(db, catalog, profile):
    add_favorites(db, USER_ID, [25])

    result = claim(db, USER_ID, 30, catalog)

    assert result.gold_reward == 25
    assert result.next_mission_id == 31
    progress = _progress(db, 30)
    assert progress.status == "completed"
    assert progress.current_value == 1
    assert _progress(db, 31).status == "active"


def test_claim_levels_up(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 20, "active", 500)
    db.commit()
    db.query(Profile).filter(Profile.id == USER_ID).update({"xp": 30})
    db.commit()

    result = claim(db, USER_ID, 20, catalog)

    assert result.leveled_up
    assert result.new_level == 2
    assert _profile(db).level == 2


def test_claim_root_without_row_checks_real_stats(db, catalog, profile):
    # Nivel 1 y ningún favorito: ninguna misión raíz está cumplida
    with pytest.raises(MissionIncomplete) as exc_info:
        claim(db, USER_ID, 10, catalog)
    assert exc_info.value.current_value == 1
    assert exc_info.value.required_value == 5

    with pytest.raises(MissionIncomplete):
        claim(db, USER_ID, 30, catalog)

    assert _progress(db, 10) is None
    assert _progress(db, 30) is None
    player = _profile(db)
    assert player.gold == 0
    assert player.xp == 0


def test_claim_root_race_pays_once(db, catalog, profile, monkeypatch):
    """Otra petición insertó la fila completed entre nuestra lectura y nuestro INSERT"""
    add_favorites(db, USER_ID, [25])

    other = SessionLocal()
    try:
        progress_store.upsert(other, USER_ID, 30, "completed", 1)
        other.commit()
    finally:
        other.close()

    real_get_one = progress_store.get_one
    calls = []

    def stale_get_one(db, user_id, mission_id):
        calls.append(mission_id)
        if len(calls) == 1:
            return None
        return real_get_one(db, user_id, mission_id)

    monkeypatch.setattr(progress_store, "get_one", stale_get_one)

    with pytest.raises(MissionNotActive):
        claim(db, USER_ID, 30, catalog)

    assert _profile(db).gold == 0
    assert _progress(db, 31) is None


def test_claim_without_profile_rolls_back(db, catalog):
    add_pokemon(db, "missing-user", range(1, 6))

    with pytest.raises(ProfileNotFound):
        claim(db, "missing-user", 1, catalog)

    assert _progress(db, 1, user_id="missing-user") is None


def test_claim_pays_at_most_once_with_stale_read(db, ready_to_claim, monkeypatch):
    """Dos claims simultáneos: el segundo leyó 'active' antes del commit del primero"""
    claim(db, USER_ID, 1, ready_to_claim)

    real_get_one = progress_store.get_one
    calls = []

    def stale_get_one(db, user_id, mission_id):
        calls.append(mission_id)
        if len(calls) == 1:
            return SimpleNamespace(status="active", current_value=5)
        return real_get_one(db, user_id, mission_id)

    monkeypatch.setattr(progress_store, "get_one", stale_get_one)

    with pytest.raises(MissionNotActive):
        claim(db, USER_ID, 1, ready_to_claim)

    assert _profile(db).gold == 100


def test_conditional_transition_succeeds_once(db, catalog, profile):
    progress_store.upsert(db, USER_ID, 1, "active", 5)
    db.commit()

    assert progress_store.conditional_transition(db, USER_ID, 1, "active", "completed")
    assert not progress_store.conditional_transition(db, USER_ID, 1, "active", "completed")

    with pytest.raises(ValueError):
        progress_store.conditional_transition(db, USER_ID, 1, "completed", "active")


def test_claim_failure_during_grant_is_transient_and_atomic(db, ready_to_claim, monkeypatch):
    def broken(db, user_id, amount):
        raise OperationalError("UPDATE profiles", {}, Exception("statement timeout"))

    monkeypatch.setattr(missions, "grant_xp", broken)

    with pytest.raises(TransientLookupFailure):
        claim(db, USER_ID, 1, ready_to_claim)

    assert _progress(db, 1).status == "active"
    assert _profile(db).gold == 0
    assert _progress(db, 2) is None


def test_chain_continuity_after_claim(db, ready_to_claim):
    claim(db, USER_ID, 1, ready_to_claim)
    add_pokemon(db, USER_ID, range(8, 11))

    reconcile_all(db, USER_ID, ready_to_claim)
    assert _progress(db, 2).current_value == 10

    result = claim(db, USER_ID, 2, ready_to_claim)
    assert result.next_mission_id == 3
    third = _progress(db, 3)
    assert third.status == "active"
    assert third.current_value == 10


def test_progress_rows_never_exceed_threshold(db, ready_to_claim):
    claim(db, USER_ID, 1, ready_to_claim)
    add_pokemon(db, USER_ID, range(8, 40))
    reconcile_all(db, USER_ID, ready_to_claim)

    for row in db.query(MissionProgress).filter(MissionProgress.user_id == USER_ID).all():
        mission = ready_to_claim.get(db, row.mission_id)
        assert 0 <= row.current_value <= mission.requirement_value
