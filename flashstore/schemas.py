from datetime import datetime
from decimal import Decimal
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, PositiveInt, field_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

Role = Literal["admin", "user"]
GameStatus = Literal["available", "unavailable"]

T = TypeVar("T")


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool

    # serialized as currentPage, totalPages, ... for the web clients
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Page(BaseModel, Generic[T]):
    items: list[T]
    pagination: Pagination


class Message(BaseModel):
    message: str
    id: Optional[int] = None


# -------------------- Users / auth --------------------

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=128)
    role: Role = "user"

    @field_validator("username")
    def strip_username(cls, v: str):
        v = v.strip()
        if len(v) < 3:
            raise ValueError("username must be at least 3 characters")
        return v


class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserRead(BaseModel):
    id: int
    username: str
    role: str = "user"
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AccountSummary(BaseModel):
    id: int
    username: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    message: str = "Login successful"
    token: str
    token_type: str = "bearer"
    user: AccountSummary


class TokenClaims(BaseModel):
    """Session attributes carried by the bearer token."""

    id: int
    username: str
    role: Role
    exp: int

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# -------------------- Catalog --------------------

class GameCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    image_url: Optional[str] = None
    size_gb: Decimal = Field(..., ge=0)
    status: GameStatus = "available"


class GameUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    image_url: Optional[str] = None
    size_gb: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[GameStatus] = None


class GameRead(BaseModel):
    id: int
    name: str
    category: str
    image_url: Optional[str] = None
    size_gb: Decimal
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FlashdiskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    capacity_gb: Decimal = Field(..., gt=0)
    real_capacity_gb: Decimal = Field(..., gt=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True


class FlashdiskUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    capacity_gb: Optional[Decimal] = Field(default=None, gt=0)
    real_capacity_gb: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class FlashdiskRead(BaseModel):
    id: int
    name: str
    capacity_gb: Decimal
    real_capacity_gb: Decimal
    price: Decimal
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Transactions --------------------

class GameRef(BaseModel):
    id: PositiveInt


class TransactionCreate(BaseModel):
    user_name: str = Field(..., min_length=1, max_length=100)
    user_address: str = Field(..., min_length=1)
    flashdisk_id: PositiveInt
    games: list[GameRef] = Field(default_factory=list)
    # optional client-side total; when given it must match the catalog sum
    total_size_gb: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("games", mode="before")
    def accept_bare_ids(cls, v):
        # clients may send [{"id": 1}, ...] or simply [1, ...]
        if isinstance(v, list):
            return [{"id": item} if isinstance(item, int) else item for item in v]
        return v


class TransactionCreated(BaseModel):
    message: str = "Transaction created successfully"
    transaction_id: str
    total_size_gb: Decimal


class TransactionGameRead(BaseModel):
    game_id: Optional[int] = None
    name: str
    category: str
    size_gb: Decimal
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionSummary(BaseModel):
    transaction_id: str
    user_name: str
    user_address: str
    flashdisk_id: int
    flashdisk_name: Optional[str] = None
    real_capacity_gb: Optional[Decimal] = None
    total_size_gb: Decimal
    status: str
    game_names: str = ""
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionDetail(TransactionSummary):
    games: list[TransactionGameRead] = []
