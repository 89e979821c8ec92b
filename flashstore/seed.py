"""
Seed a database with the sample catalog and accounts.

- Creates every table if missing
- Adds the admin/user1/user2 accounts, six games and six flashdisks,
  skipping rows that already exist (by username / name)

Usage:
  python -m flashstore.seed --database-url sqlite:///./flashstore.db
"""
import argparse
import logging
from decimal import Decimal

from sqlalchemy import select

from . import crud, models, schemas
from .config import get_settings
from .db import Database
from .logs import configure_logging

logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    ("admin", "admin123", "admin"),
    ("user1", "user123", "user"),
    ("user2", "user123", "user"),
]

_IMG = "https://images.pexels.com/photos/{}/pexels-photo-{}.jpeg?auto=compress&cs=tinysrgb&w=500"

SAMPLE_GAMES = [
    ("Grand Theft Auto V", "Action", _IMG.format(442576, 442576), "95.0"),
    ("Red Dead Redemption 2", "Action", _IMG.format(1174746, 1174746), "120.0"),
    ("Cyberpunk 2077", "RPG", _IMG.format(2047905, 2047905), "70.0"),
    ("The Witcher 3", "RPG", _IMG.format(3165335, 3165335), "50.0"),
    ("FIFA 24", "Sports", _IMG.format(274422, 274422), "35.0"),
    ("Call of Duty: Modern Warfare", "FPS", _IMG.format(3165335, 3165335), "85.0"),
]

# label capacity, usable capacity, price
SAMPLE_FLASHDISKS = [
    ("Flashdisk 8GB", "8.0", "7.4", "25000"),
    ("Flashdisk 16GB", "16.0", "14.8", "35000"),
    ("Flashdisk 32GB", "32.0", "29.8", "55000"),
    ("Flashdisk 64GB", "64.0", "59.6", "85000"),
    ("Flashdisk 128GB", "128.0", "119.2", "150000"),
    ("Flashdisk 256GB", "256.0", "238.4", "275000"),
]


def seed(database: Database) -> dict[str, int]:
    database.create_all()
    created = {"users": 0, "games": 0, "flashdisks": 0}
    db = database.session()
    try:
        for username, password, role in SAMPLE_USERS:
            if crud.get_user_by_username(db, username):
                continue
            crud.create_user(db, schemas.UserCreate(username=username, password=password, role=role))
            created["users"] += 1

        existing_games = set(db.execute(select(models.Game.name)).scalars().all())
        for name, category, image_url, size in SAMPLE_GAMES:
            if name in existing_games:
                continue
            crud.create_game(
                db, schemas.GameCreate(name=name, category=category, image_url=image_url, size_gb=Decimal(size))
            )
            created["games"] += 1

        existing_disks = set(db.execute(select(models.Flashdisk.name)).scalars().all())
        for name, capacity, real_capacity, price in SAMPLE_FLASHDISKS:
            if name in existing_disks:
                continue
            crud.create_flashdisk(
                db,
                schemas.FlashdiskCreate(
                    name=name,
                    capacity_gb=Decimal(capacity),
                    real_capacity_gb=Decimal(real_capacity),
                    price=Decimal(price),
                ),
            )
            created["flashdisks"] += 1
    finally:
        db.close()
    logger.info("seed.completed", extra={"extra_data": created})
    return created


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Create tables and load sample data")
    parser.add_argument("--database-url", default=settings.DATABASE_URL, help="SQLAlchemy database URL")
    args = parser.parse_args()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    database = Database(args.database_url)
    try:
        seed(database)
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
