from sqlalchemy.exc import OperationalError

import stats
from catalog import RequirementKind
from conftest import USER_ID, add_favorites, add_items, add_pokemon, add_species, add_teams
from models import Profile, UserGlobalStats
from stats import (
    bump_global_stat, generation_for_pokedex_id, refresh_global_stats, resolve, seed_species
)


def test_generation_ranges():
    assert generation_for_pokedex_id(1) == 1
    assert generation_for_pokedex_id(151) == 1
    assert generation_for_pokedex_id(152) == 2
    assert generation_for_pokedex_id(1025) == 9
    assert generation_for_pokedex_id(0) == 0
    assert generation_for_pokedex_id(2000) == 0


def test_resolve_counts(db, profile):
    add_pokemon(db, USER_ID, [1, 4, 7])
    add_favorites(db, USER_ID, [4])
    add_teams(db, USER_ID, 2)
    add_items(db, USER_ID, "skin", 2)
    add_items(db, USER_ID, "badge", 1)

    assert resolve(db, USER_ID, "collect_pokemon") == 3
    assert resolve(db, USER_ID, "favorite_count") == 1
    assert resolve(db, USER_ID, "create_team") == 2
    assert resolve(db, USER_ID, "shop_buy") == 3
    assert resolve(db, USER_ID, "own_skins") == 2
    assert resolve(db, USER_ID, "own_badges") == 1
    assert resolve(db, USER_ID, "own_titles") == 0


def test_resolve_profile_values(db, profile):
    db.query(Profile).filter(Profile.id == USER_ID).update({"level": 4, "total_gold_earned": 350})
    db.commit()

    assert resolve(db, USER_ID, "reach_level") == 4
    assert resolve(db, USER_ID, "earn_gold") == 350


def test_resolve_unknown_requirement_is_zero(db, profile):
    assert resolve(db, USER_ID, "catch_legendary") == 0


def test_resolve_types_from_species(db, profile):
    add_species(db, [
        (4, "charmander", ["fire"]),
        (6, "charizard", ["fire", "flying"]),
        (7, "squirtle", ["water"]),
    ])
    add_pokemon(db, USER_ID, [4, 6, 7])

    assert resolve(db, USER_ID, "collect_type_fire") == 2
    assert resolve(db, USER_ID, "collect_type_Flying") == 1
    assert resolve(db, USER_ID, "collect_type_grass") == 0


def test_resolve_types_falls_back_to_cached_counter(db, profile):
    add_pokemon(db, USER_ID, [4, 5])
    bump_global_stat(db, USER_ID, "collect_type_fire", 2)
    db.commit()

    assert resolve(db, USER_ID, "collect_type_fire") == 2
    assert resolve(db, USER_ID, "collect_type_water") == 0


def test_resolve_generation_uses_species_then_ranges(db, profile):
    add_species(db, [(25, "pikachu", ["electric"])])
    add_pokemon(db, USER_ID, [25, 1, 152, 153])

    assert resolve(db, USER_ID, "collect_gen_1") == 2
    assert resolve(db, USER_ID, "collect_gen_2") == 2
    assert resolve(db, USER_ID, "collect_gen_9") == 0


def test_resolve_failure_degrades_to_zero(db, profile, monkeypatch):
    add_pokemon(db, USER_ID, [1, 2, 3])

    def broken(db, user_id, argument):
        raise OperationalError("SELECT count(*) FROM user_pokemons", {}, Exception("statement timeout"))

    monkeypatch.setitem(stats.RESOLVERS, RequirementKind.collect_pokemon, broken)

    assert resolve(db, USER_ID, "collect_pokemon") == 0
    # La transacción sigue utilizable después del fallo
    assert resolve(db, USER_ID, "reach_level") == 1


def test_refresh_global_stats(db, profile):
    add_species(db, [(1, "bulbasaur", ["grass", "poison"]), (4, "charmander", ["fire"])])
    add_pokemon(db, USER_ID, [1, 4, 152])
    add_teams(db, USER_ID, 1)
    add_items(db, USER_ID, "theme", 2)

    refreshed = refresh_global_stats(db, USER_ID)
    db.commit()

    assert refreshed.total_pokemon_collected == 3
    assert refreshed.total_teams == 1
    assert refreshed.total_shop_purchases == 2
    assert refreshed.total_themes == 2
    assert refreshed.type_counts == {"grass": 1, "poison": 1, "fire": 1}
    assert refreshed.gen_counts == {"1": 2, "2": 1}


def test_bump_global_stat(db, profile):
    assert bump_global_stat(db, USER_ID, "collect_pokemon", 2)
    assert bump_global_stat(db, USER_ID, "collect_type_fire")
    assert bump_global_stat(db, USER_ID, "collect_type_fire")
    assert bump_global_stat(db, USER_ID, "collect_gen_1")
    assert not bump_global_stat(db, USER_ID, "reach_level")
    assert not bump_global_stat(db, USER_ID, "unknown")
    db.commit()

    row = db.query(UserGlobalStats).filter(UserGlobalStats.user_id == USER_ID).one()
    assert row.total_pokemon_collected == 2
    assert row.type_counts == {"fire": 2}
    assert row.gen_counts == {"1": 1}


def test_seed_species_skips_existing(db):
    entries = [
        {"pokedex_id": 1, "name": "bulbasaur", "types": ["Grass", "Poison"]},
        {"pokedex_id": 152, "name": "chikorita", "types": ["grass"]},
    ]
    assert seed_species(db, entries) == 2
    assert seed_species(db, entries) == 0
