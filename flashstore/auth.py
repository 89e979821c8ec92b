import time
from typing import Optional

import jwt
from passlib.context import CryptContext
from pydantic import ValidationError

from .config import Settings, get_settings
from .schemas import TokenClaims

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs;
# bcrypt stays verifiable for accounts imported from older databases
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")


class InvalidToken(Exception):
    """The bearer token is malformed, has a bad signature or has expired."""


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    expires_delta: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Sign a bearer token with the app's secret and TTL (process settings when none are given)."""
    settings = settings or get_settings()
    now = int(time.time())
    exp = now + (expires_delta or settings.TOKEN_TTL_SECONDS)
    payload = {"sub": str(user_id), "username": username, "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["sub", "exp"]},
    )


def claims_from_token(token: str, settings: Optional[Settings] = None) -> TokenClaims:
    try:
        payload = decode_access_token(token, settings)
    except jwt.PyJWTError as exc:
        raise InvalidToken(str(exc)) from exc
    try:
        return TokenClaims(
            id=int(payload["sub"]),
            username=payload.get("username", ""),
            role=payload.get("role"),
            exp=payload["exp"],
        )
    except (ValueError, ValidationError) as exc:
        raise InvalidToken("invalid token payload") from exc


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)
