import logging
from contextlib import asynccontextmanager
from typing import Literal, NamedTuple, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security.utils import get_authorization_scheme_param
from sqlalchemy.orm import Session

from . import crud, schemas
from .auth import InvalidToken, claims_from_token, create_access_token, verify_password
from .config import Settings, get_settings
from .db import Database
from .errors import register_exception_handlers
from .logs import configure_logging
from .middleware import RequestIdMiddleware, principal_ctx_var
from .utils import round_gb, format_gb

logger = logging.getLogger(__name__)

router = APIRouter()


# Dependency to get DB session per request, from the app's storage handle

def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def _claims_from_header(request: Request, authorization: Optional[str]) -> Optional[schemas.TokenClaims]:
    if not authorization:
        return None
    scheme, token = get_authorization_scheme_param(authorization)
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    try:
        claims = claims_from_token(token, request.app.state.settings)
    except InvalidToken:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    principal = f"user:{claims.id}"
    principal_ctx_var.set(principal)
    request.state.principal = principal
    return claims


async def optional_claims(request: Request, authorization: Optional[str] = Header(default=None)) -> Optional[schemas.TokenClaims]:
    """Decode the bearer token when one is sent; the token is the only session state."""
    return _claims_from_header(request, authorization)


async def current_claims(claims: Optional[schemas.TokenClaims] = Depends(optional_claims)) -> schemas.TokenClaims:
    if claims is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    return claims


def require_admin(claims: schemas.TokenClaims = Depends(current_claims), db: Session = Depends(get_db)) -> schemas.TokenClaims:
    if not claims.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    # tokens outlive deactivation; a disabled or removed admin loses access at once
    acting = crud.get_user(db, claims.id)
    if not acting or not acting.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")
    return claims


class ListParams(NamedTuple):
    page: int
    limit: int
    search: Optional[str]


def list_params(
    request: Request,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    search: Optional[str] = Query(None, max_length=100),
) -> ListParams:
    settings: Settings = request.app.state.settings
    limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    return ListParams(page=page, limit=limit, search=search)


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/health")
def health():
    return {"status": "ok"}


# -------------------- Auth --------------------

@router.post("/auth/login", response_model=schemas.LoginResponse)
def auth_login(request: Request, payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_username(db, payload.username)
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        logger.info("auth.login_failed", extra={"extra_data": {"username": payload.username}})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(user.id, user.username, user.role, settings=request.app.state.settings)
    return schemas.LoginResponse(token=token, user=schemas.AccountSummary.model_validate(user))


@router.post("/auth/register", response_model=schemas.Message, status_code=201)
def auth_register(
    request: Request,
    payload: schemas.UserCreate,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    # self-service sign-up only yields ordinary accounts; the header matters only for admin sign-up
    if payload.role == "admin":
        claims = _claims_from_header(request, authorization)
        if claims is None or not claims.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    try:
        user = crud.create_user(db, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="User registered successfully", id=user.id)


@router.get("/auth/me", response_model=schemas.TokenClaims)
def auth_me(claims: schemas.TokenClaims = Depends(current_claims)):
    return claims


# -------------------- Games --------------------

@router.get("/games", response_model=schemas.Page[schemas.GameRead])
def list_games(
    params: ListParams = Depends(list_params),
    status_filter: Optional[schemas.GameStatus] = Query(None, alias="status"),
    sort: Literal["newest", "name"] = Query("newest"),
    db: Session = Depends(get_db),
):
    items, pagination = crud.list_games(db, params.page, params.limit, params.search, status_filter, sort)
    return {"items": items, "pagination": pagination}


@router.get("/games/{game_id}", response_model=schemas.GameRead)
def get_game(game_id: int, db: Session = Depends(get_db)):
    game = crud.get_game(db, game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    return game


@router.post("/games", response_model=schemas.Message, status_code=201, dependencies=[Depends(require_admin)])
def create_game(payload: schemas.GameCreate, db: Session = Depends(get_db)):
    try:
        game = crud.create_game(db, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="Game created successfully", id=game.id)


@router.put("/games/{game_id}", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def update_game(game_id: int, payload: schemas.GameUpdate, db: Session = Depends(get_db)):
    game = crud.get_game(db, game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    try:
        crud.update_game(db, game, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="Game updated successfully", id=game_id)


@router.delete("/games/{game_id}", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def delete_game(game_id: int, db: Session = Depends(get_db)):
    game = crud.get_game(db, game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    crud.delete_game(db, game)
    return schemas.Message(message="Game deleted successfully", id=game_id)


# -------------------- Flashdisks --------------------

@router.get("/flashdisks", response_model=schemas.Page[schemas.FlashdiskRead])
def list_flashdisks(
    params: ListParams = Depends(list_params),
    status_filter: Literal["active", "inactive", "all"] = Query("active", alias="status"),
    db: Session = Depends(get_db),
):
    items, pagination = crud.list_flashdisks(db, params.page, params.limit, params.search, status_filter)
    return {"items": items, "pagination": pagination}


@router.get("/flashdisks/{flashdisk_id}", response_model=schemas.FlashdiskRead)
def get_flashdisk(flashdisk_id: int, db: Session = Depends(get_db)):
    disk = crud.get_flashdisk(db, flashdisk_id)
    if not disk:
        raise HTTPException(status_code=404, detail="Flashdisk not found")
    return disk


@router.post("/flashdisks", response_model=schemas.Message, status_code=201, dependencies=[Depends(require_admin)])
def create_flashdisk(payload: schemas.FlashdiskCreate, db: Session = Depends(get_db)):
    try:
        disk = crud.create_flashdisk(db, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="Flashdisk created successfully", id=disk.id)


@router.put("/flashdisks/{flashdisk_id}", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def update_flashdisk(flashdisk_id: int, payload: schemas.FlashdiskUpdate, db: Session = Depends(get_db)):
    disk = crud.get_flashdisk(db, flashdisk_id)
    if not disk:
        raise HTTPException(status_code=404, detail="Flashdisk not found")
    try:
        crud.update_flashdisk(db, disk, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="Flashdisk updated successfully", id=flashdisk_id)


@router.delete("/flashdisks/{flashdisk_id}", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def delete_flashdisk(flashdisk_id: int, db: Session = Depends(get_db)):
    disk = crud.get_flashdisk(db, flashdisk_id)
    if not disk:
        raise HTTPException(status_code=404, detail="Flashdisk not found")
    crud.deactivate_flashdisk(db, disk)
    return schemas.Message(message="Flashdisk deactivated successfully", id=flashdisk_id)


# -------------------- Transactions --------------------

@router.get(
    "/transactions",
    response_model=schemas.Page[schemas.TransactionSummary],
    dependencies=[Depends(require_admin)],
)
def list_transactions(
    params: ListParams = Depends(list_params),
    status_filter: Optional[str] = Query(None, alias="status", max_length=20),
    db: Session = Depends(get_db),
):
    items, pagination = crud.list_transactions(db, params.page, params.limit, params.search, status_filter)
    return {"items": items, "pagination": pagination}


@router.post("/transactions", response_model=schemas.TransactionCreated, status_code=201)
def create_transaction(payload: schemas.TransactionCreate, db: Session = Depends(get_db)):
    device = crud.get_flashdisk(db, payload.flashdisk_id)
    games = []
    if device is not None:
        try:
            games = crud.resolve_games(db, [ref.id for ref in payload.games])
        except ValueError as e:
            raise _bad_request(e)

    decision = crud.validate_order(games, device)
    if not decision.accepted:
        logger.info(
            "transaction.rejected",
            extra={"extra_data": {"code": decision.code, "flashdisk_id": payload.flashdisk_id}},
        )
        raise HTTPException(status_code=400, detail=decision.reason)

    if payload.total_size_gb is not None and round_gb(payload.total_size_gb) != decision.total:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Submitted total ({format_gb(payload.total_size_gb)} GB) does not match "
                f"the selected games ({format_gb(decision.total)} GB)"
            ),
        )

    try:
        txn = crud.record_transaction(db, payload.user_name, payload.user_address, device, games, decision.total)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.TransactionCreated(transaction_id=txn.transaction_id, total_size_gb=txn.total_size_gb)


@router.delete("/transactions/clear", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def clear_transactions(db: Session = Depends(get_db)):
    removed = crud.clear_transactions(db)
    return schemas.Message(message=f"All transactions cleared successfully ({removed} removed)")


@router.get("/transactions/{transaction_id}", response_model=schemas.TransactionDetail)
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    txn = crud.get_transaction(db, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@router.delete("/transactions/{transaction_id}", response_model=schemas.Message, dependencies=[Depends(require_admin)])
def delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    txn = crud.get_transaction(db, transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    crud.delete_transaction(db, txn)
    return schemas.Message(message="Transaction deleted successfully")


# -------------------- Users --------------------

@router.get("/users", response_model=schemas.Page[schemas.UserRead], dependencies=[Depends(require_admin)])
def list_users(
    params: ListParams = Depends(list_params),
    role: Optional[schemas.Role] = Query(None),
    db: Session = Depends(get_db),
):
    items, pagination = crud.list_users(db, params.page, params.limit, params.search, role)
    return {"items": items, "pagination": pagination}


@router.get("/users/{user_id}", response_model=schemas.UserRead, dependencies=[Depends(require_admin)])
def get_user(user_id: int, db: Session = Depends(get_db)):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/users", response_model=schemas.Message, status_code=201, dependencies=[Depends(require_admin)])
def create_user(payload: schemas.UserCreate, db: Session = Depends(get_db)):
    try:
        user = crud.create_user(db, payload)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="User created successfully", id=user.id)


@router.put("/users/{user_id}", response_model=schemas.Message)
def update_user(
    user_id: int,
    payload: schemas.UserUpdate,
    claims: schemas.TokenClaims = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        crud.update_user(db, user, payload, acting_user_id=claims.id)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="User updated successfully", id=user_id)


@router.delete("/users/{user_id}", response_model=schemas.Message)
def deactivate_user(user_id: int, claims: schemas.TokenClaims = Depends(require_admin), db: Session = Depends(get_db)):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        crud.deactivate_user(db, user, acting_user_id=claims.id)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="User deactivated successfully", id=user_id)


@router.delete("/users/{user_id}/permanent", response_model=schemas.Message)
def delete_user(user_id: int, claims: schemas.TokenClaims = Depends(require_admin), db: Session = Depends(get_db)):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        crud.delete_user(db, user, acting_user_id=claims.id)
    except ValueError as e:
        raise _bad_request(e)
    return schemas.Message(message="User deleted permanently", id=user_id)


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the API around an explicit storage handle.

    Tables are created when the app starts and the connection pool is closed
    when it shuts down.
    """
    settings = settings or get_settings()
    database = database or Database(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info("app.started", extra={"extra_data": {"database": database.engine.url.render_as_string()}})
        yield
        database.dispose()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    register_exception_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(router)
    return app


_settings = get_settings()
configure_logging(_settings.LOG_LEVEL, _settings.LOG_JSON)
app = create_app(_settings)
