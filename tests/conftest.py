from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from flashstore import crud, schemas
from flashstore.auth import create_access_token
from flashstore.config import Settings
from flashstore.db import Database
from flashstore.main import create_app


@pytest.fixture(scope="function")
def database() -> Generator:
    # Use in-memory SQLite with a single connection
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture(scope="function")
def db_session(database) -> Generator:
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def client(database):
    app = create_app(Settings(DATABASE_URL="sqlite://"), database=database)
    with TestClient(app) as c:
        yield c


def make_user(database, username, password="secret123", role="user"):
    """Insert an account directly and return (id, bearer headers)."""
    db = database.session()
    try:
        user = crud.create_user(db, schemas.UserCreate(username=username, password=password, role=role))
        token = create_access_token(user.id, user.username, user.role)
        return user.id, {"Authorization": f"Bearer {token}"}
    finally:
        db.close()


@pytest.fixture
def admin(database):
    user_id, headers = make_user(database, "admin", "admin123", role="admin")
    return {"id": user_id, "headers": headers}


@pytest.fixture
def admin_headers(admin):
    return admin["headers"]


@pytest.fixture
def user_headers(database):
    _, headers = make_user(database, "user1", "user123")
    return headers


@pytest.fixture
def catalog(database):
    """One 8 GB flashdisk (7.4 GB usable) and a handful of games."""
    db = database.session()
    try:
        disk = crud.create_flashdisk(
            db,
            schemas.FlashdiskCreate(
                name="Flashdisk 8GB", capacity_gb=Decimal("8.0"), real_capacity_gb=Decimal("7.4"), price=Decimal("25000")
            ),
        )
        games = {}
        for name, category, size in [
            ("Celeste", "Platformer", "3.0"),
            ("Hades", "Roguelike", "4.0"),
            ("Hollow Knight", "Metroidvania", "4.5"),
            ("Stardew Valley", "Simulation", "3.4"),
        ]:
            game = crud.create_game(db, schemas.GameCreate(name=name, category=category, size_gb=Decimal(size)))
            games[name] = game.id
        return {"flashdisk_id": disk.id, "games": games}
    finally:
        db.close()


@pytest.fixture
def make_account(database):
    def _make(username, password="secret123", role="user"):
        return make_user(database, username, password, role)

    return _make
