import logging
import secrets
import string
import time
from decimal import Decimal
from typing import NamedTuple, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import delete, desc, asc, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import hash_password
from .utils import format_gb, paginate, round_gb, sanitize_input, search_pattern

logger = logging.getLogger(__name__)

# free-text columns cleaned with bleach before they are stored
TEXT_FIELDS = ("name", "category", "username", "user_name", "user_address")


def apply_patch(obj, patch: BaseModel) -> list[str]:
    """Merge the fields the caller actually sent onto ``obj``.

    Unset fields and explicit nulls leave the stored value alone. Returns the
    names of the fields that were written.
    """
    changed = []
    for field, value in patch.model_dump(exclude_unset=True).items():
        if value is None or not hasattr(obj, field):
            continue
        if field in TEXT_FIELDS:
            value = _required_text(field, value)
        setattr(obj, field, value)
        changed.append(field)
    return changed


def _required_text(field: str, value: str) -> str:
    value = sanitize_input(value)
    if not value:
        raise ValueError(f"{field} must not be empty")
    return value


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("integrity error") from e


# -------------------- Users --------------------

def get_user(db: Session, user_id: int) -> models.User | None:
    return db.get(models.User, user_id)


def get_user_by_username(db: Session, username: str) -> models.User | None:
    return db.execute(select(models.User).where(models.User.username == username)).scalars().first()


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    username = sanitize_input(user.username)
    if len(username) < 3:
        raise ValueError("username must be at least 3 characters")
    if get_user_by_username(db, username):
        raise ValueError("Username already exists")
    db_user = models.User(username=username, password_hash=hash_password(user.password), role=user.role)
    db.add(db_user)
    _commit(db)
    db.refresh(db_user)
    logger.info("user.created", extra={"extra_data": {"user_id": db_user.id, "role": db_user.role}})
    return db_user


def list_users(db: Session, page: int, limit: int, search: str | None = None, role: str | None = None):
    stmt = select(models.User)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(models.User.username.ilike(pattern, escape="\\"))
    if role:
        stmt = stmt.where(models.User.role == role)
    stmt = stmt.order_by(desc(models.User.created_at), desc(models.User.id))
    return paginate(db, stmt, page, limit)


def update_user(db: Session, user: models.User, patch: schemas.UserUpdate, acting_user_id: int) -> models.User:
    if user.id == acting_user_id and patch.is_active is False:
        raise ValueError("You cannot deactivate your own account")
    if patch.username is not None:
        username = sanitize_input(patch.username)
        if len(username) < 3:
            raise ValueError("username must be at least 3 characters")
        other = get_user_by_username(db, username)
        if other and other.id != user.id:
            raise ValueError("Username already exists")
    apply_patch(user, patch)
    if patch.password:
        user.password_hash = hash_password(patch.password)
    _commit(db)
    db.refresh(user)
    return user


def deactivate_user(db: Session, user: models.User, acting_user_id: int) -> models.User:
    if user.id == acting_user_id:
        raise ValueError("You cannot deactivate your own account")
    user.is_active = False
    _commit(db)
    db.refresh(user)
    logger.info("user.deactivated", extra={"extra_data": {"user_id": user.id}})
    return user


def delete_user(db: Session, user: models.User, acting_user_id: int) -> None:
    if user.id == acting_user_id:
        raise ValueError("You cannot delete your own account")
    user_id = user.id
    db.delete(user)
    _commit(db)
    logger.info("user.deleted", extra={"extra_data": {"user_id": user_id}})


# -------------------- Games --------------------

GAME_SORTS = {
    "newest": (desc(models.Game.created_at), desc(models.Game.id)),
    "name": (asc(models.Game.name), asc(models.Game.id)),
}


def get_game(db: Session, game_id: int) -> models.Game | None:
    return db.get(models.Game, game_id)


def list_games(
    db: Session,
    page: int,
    limit: int,
    search: str | None = None,
    status: str | None = None,
    sort: str = "newest",
):
    if sort not in GAME_SORTS:
        raise ValueError(f"sort must be one of: {', '.join(GAME_SORTS)}")
    stmt = select(models.Game)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(
            or_(
                models.Game.name.ilike(pattern, escape="\\"),
                models.Game.category.ilike(pattern, escape="\\"),
            )
        )
    if status:
        stmt = stmt.where(models.Game.status == status)
    stmt = stmt.order_by(*GAME_SORTS[sort])
    return paginate(db, stmt, page, limit)


def create_game(db: Session, game: schemas.GameCreate) -> models.Game:
    db_game = models.Game(
        name=_required_text("name", game.name),
        category=_required_text("category", game.category),
        image_url=game.image_url or None,
        size_gb=round_gb(game.size_gb),
        status=game.status,
    )
    db.add(db_game)
    _commit(db)
    db.refresh(db_game)
    return db_game


def update_game(db: Session, game: models.Game, patch: schemas.GameUpdate) -> models.Game:
    if patch.size_gb is not None:
        patch = patch.model_copy(update={"size_gb": round_gb(patch.size_gb)})
    apply_patch(game, patch)
    _commit(db)
    db.refresh(game)
    return game


def delete_game(db: Session, game: models.Game) -> None:
    # order lines keep their snapshot; their game_id is nulled by the FK
    db.delete(game)
    _commit(db)


def resolve_games(db: Session, game_ids: Sequence[int]) -> list[models.Game]:
    """Load the ordered games, in request order, rejecting unknown or unorderable ones."""
    if len(set(game_ids)) != len(game_ids):
        raise ValueError("Each game can only be ordered once")
    found = {
        g.id: g for g in db.execute(select(models.Game).where(models.Game.id.in_(game_ids))).scalars().all()
    }
    missing = [str(gid) for gid in game_ids if gid not in found]
    if missing:
        raise ValueError(f"Game not found: {', '.join(missing)}")
    games = [found[gid] for gid in game_ids]
    unavailable = [g.name for g in games if g.status != "available"]
    if unavailable:
        raise ValueError(f"Game is not available: {', '.join(unavailable)}")
    return games


# -------------------- Flashdisks --------------------

def get_flashdisk(db: Session, flashdisk_id: int) -> models.Flashdisk | None:
    return db.get(models.Flashdisk, flashdisk_id)


def _check_capacities(capacity_gb, real_capacity_gb) -> None:
    if round_gb(real_capacity_gb) > round_gb(capacity_gb):
        raise ValueError(
            f"Real capacity ({format_gb(real_capacity_gb)} GB) cannot exceed capacity ({format_gb(capacity_gb)} GB)"
        )


def list_flashdisks(db: Session, page: int, limit: int, search: str | None = None, status: str | None = "active"):
    stmt = select(models.Flashdisk)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(models.Flashdisk.name.ilike(pattern, escape="\\"))
    if status == "active":
        stmt = stmt.where(models.Flashdisk.is_active.is_(True))
    elif status == "inactive":
        stmt = stmt.where(models.Flashdisk.is_active.is_(False))
    elif status not in (None, "", "all"):
        raise ValueError("status must be one of: active, inactive, all")
    stmt = stmt.order_by(asc(models.Flashdisk.capacity_gb), asc(models.Flashdisk.id))
    return paginate(db, stmt, page, limit)


def create_flashdisk(db: Session, flashdisk: schemas.FlashdiskCreate) -> models.Flashdisk:
    _check_capacities(flashdisk.capacity_gb, flashdisk.real_capacity_gb)
    db_disk = models.Flashdisk(
        name=_required_text("name", flashdisk.name),
        capacity_gb=round_gb(flashdisk.capacity_gb),
        real_capacity_gb=round_gb(flashdisk.real_capacity_gb),
        price=round_gb(flashdisk.price),
        is_active=flashdisk.is_active,
    )
    db.add(db_disk)
    _commit(db)
    db.refresh(db_disk)
    return db_disk


def update_flashdisk(db: Session, disk: models.Flashdisk, patch: schemas.FlashdiskUpdate) -> models.Flashdisk:
    rounded = {
        k: round_gb(v)
        for k, v in patch.model_dump(include={"capacity_gb", "real_capacity_gb", "price"}, exclude_none=True).items()
    }
    patch = patch.model_copy(update=rounded)
    _check_capacities(
        patch.capacity_gb if patch.capacity_gb is not None else disk.capacity_gb,
        patch.real_capacity_gb if patch.real_capacity_gb is not None else disk.real_capacity_gb,
    )
    apply_patch(disk, patch)
    _commit(db)
    db.refresh(disk)
    return disk


def deactivate_flashdisk(db: Session, disk: models.Flashdisk) -> models.Flashdisk:
    disk.is_active = False
    _commit(db)
    db.refresh(disk)
    return disk


# -------------------- Orders --------------------

class OrderDecision(NamedTuple):
    accepted: bool
    total: Decimal
    code: Optional[str] = None
    reason: Optional[str] = None


def validate_order(items: Sequence, device) -> OrderDecision:
    """Decide whether ``items`` fit on ``device``.

    ``device`` is None when the requested flashdisk does not exist; that is
    reported before any size arithmetic. A total equal to the real capacity
    is accepted.
    """
    if device is None:
        return OrderDecision(False, Decimal("0.00"), "device_not_found", "Flashdisk not found")
    if not device.is_active:
        return OrderDecision(False, Decimal("0.00"), "device_inactive", "Flashdisk is not available")
    if not items:
        return OrderDecision(False, Decimal("0.00"), "no_items", "Select at least one game")

    # Business rule: total kept to 2 decimals, compared against usable space only
    total = round_gb(sum((Decimal(str(item.size_gb)) for item in items), Decimal("0")))
    capacity = round_gb(device.real_capacity_gb)
    if total > capacity:
        return OrderDecision(
            False,
            total,
            "capacity_exceeded",
            f"Total size ({format_gb(total)} GB) exceeds real capacity ({format_gb(capacity)} GB)",
        )
    return OrderDecision(True, total)


_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_transaction_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"TXN-{int(time.time() * 1000)}-{suffix}"


def record_transaction(
    db: Session,
    user_name: str,
    user_address: str,
    device: models.Flashdisk,
    games: Sequence,
    total_size_gb: Decimal,
) -> models.Transaction:
    """Persist an accepted order and one line per game in a single commit.

    Either the header and every line are stored, or nothing is.
    """
    user_name = sanitize_input(user_name)
    user_address = sanitize_input(user_address)
    if not user_name or not user_address:
        raise ValueError("user_name and user_address are required")

    txn = models.Transaction(
        transaction_id=generate_transaction_id(),
        user_name=user_name,
        user_address=user_address,
        flashdisk_id=device.id,
        total_size_gb=round_gb(total_size_gb),
    )
    for game in games:
        txn.lines.append(
            models.TransactionGame(
                game_id=game.id,
                name=game.name,
                category=game.category,
                size_gb=round_gb(game.size_gb),
                image_url=game.image_url,
            )
        )
    db.add(txn)
    _commit(db)
    db.refresh(txn)
    logger.info(
        "transaction.created",
        extra={
            "extra_data": {
                "transaction_id": txn.transaction_id,
                "flashdisk_id": device.id,
                "games": len(games),
                "total_size_gb": str(txn.total_size_gb),
            }
        },
    )
    return txn


def get_transaction(db: Session, transaction_id: str) -> models.Transaction | None:
    stmt = select(models.Transaction).where(models.Transaction.transaction_id == transaction_id)
    return db.execute(stmt).unique().scalars().first()


def list_transactions(db: Session, page: int, limit: int, search: str | None = None, status: str | None = None):
    stmt = select(models.Transaction)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(
            or_(
                models.Transaction.user_name.ilike(pattern, escape="\\"),
                models.Transaction.transaction_id.ilike(pattern, escape="\\"),
                models.Transaction.flashdisk.has(models.Flashdisk.name.ilike(pattern, escape="\\")),
                models.Transaction.lines.any(models.TransactionGame.name.ilike(pattern, escape="\\")),
            )
        )
    if status:
        stmt = stmt.where(models.Transaction.status == status)
    stmt = stmt.order_by(desc(models.Transaction.created_at), desc(models.Transaction.id))
    return paginate(db, stmt, page, limit)


def delete_transaction(db: Session, txn: models.Transaction) -> None:
    db.delete(txn)
    _commit(db)


def clear_transactions(db: Session) -> int:
    db.execute(delete(models.TransactionGame))
    removed = db.execute(delete(models.Transaction)).rowcount
    _commit(db)
    logger.info("transactions.cleared", extra={"extra_data": {"removed": removed}})
    return removed
