import pytest

from conftest import USER_ID
from models import Profile
from progression import (
    calculate_level, get_level_info, grant_gold, grant_xp, xp_before_level, xp_for_next_level
)


def test_level_formula():
    assert xp_for_next_level(1) == 60
    assert xp_for_next_level(10) == 600
    assert calculate_level(0) == 1
    assert calculate_level(59) == 1
    assert calculate_level(60) == 2
    assert calculate_level(180) == 3
    assert xp_before_level(3) == 180


def test_grant_gold_also_counts_total(db, profile):
    assert grant_gold(db, USER_ID, 40) == 1
    db.commit()

    player = db.query(Profile).filter(Profile.id == USER_ID).one()
    assert player.gold == 40
    assert player.total_gold_earned == 40


def test_grant_gold_missing_profile(db):
    assert grant_gold(db, "nobody", 10) == 0
    assert grant_gold(db, "nobody", 0) == 0


def test_grant_negative_amounts_rejected(db, profile):
    with pytest.raises(ValueError):
        grant_gold(db, USER_ID, -1)
    with pytest.raises(ValueError):
        grant_xp(db, USER_ID, -1)


def test_grant_xp_levels_up(db, profile):
    result = grant_xp(db, USER_ID, 190)
    db.commit()

    assert result == {"xp_earned": 190, "leveled_up": True, "new_level": 3}
    player = db.query(Profile).filter(Profile.id == USER_ID).one()
    assert player.level == 3
    assert player.xp_for_next_level == 180


def test_level_info(db, profile):
    grant_xp(db, USER_ID, 90)
    db.commit()

    info = get_level_info(db.query(Profile).filter(Profile.id == USER_ID).one())

    assert info["level"] == 2
    assert info["xp_in_level"] == 30
    assert info["xp_next_level"] == 120
    assert info["xp_progress"] == 25.0
