"""
Fixtures compartidas: BD SQLite en memoria, catálogo sembrado y un jugador.
"""

import os

# Debe fijarse antes de importar database
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from catalog import MissionCatalog, seed_missions
from database import SessionLocal, drop_db, init_db
from models import Favorite, InventoryItem, Profile, PokemonSpecies, Team, UserPokemon

USER_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
def db():
    drop_db()
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    seed_missions(db)
    return MissionCatalog()


@pytest.fixture
def profile(db):
    player = Profile(id=USER_ID, username="ash")
    db.add(player)
    db.commit()
    return player


def add_pokemon(db, user_id, pokedex_ids):
    for pokedex_id in pokedex_ids:
        db.add(UserPokemon(user_id=user_id, pokedex_id=pokedex_id))
    db.commit()


def add_species(db, entries):
    for pokedex_id, name, types in entries:
        db.add(PokemonSpecies(pokedex_id=pokedex_id, name=name, types=types))
    db.commit()


def add_favorites(db, user_id, pokedex_ids):
    for pokedex_id in pokedex_ids:
        db.add(Favorite(user_id=user_id, pokedex_id=pokedex_id))
    db.commit()


def add_teams(db, user_id, count):
    for i in range(count):
        db.add(Team(user_id=user_id, name=f"Team {i + 1}"))
    db.commit()


def add_items(db, user_id, category, count):
    for i in range(count):
        db.add(InventoryItem(user_id=user_id, item_id=f"{category}_{i}", category=category))
    db.commit()
