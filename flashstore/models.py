from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # exact, case-sensitive match is what makes two usernames the same
    username = Column(String(100), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    # role column for simple RBAC: 'user' or 'admin'
    role = Column(String(20), nullable=False, default="user", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Game(Base):
    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    category = Column(String(100), nullable=False, index=True)
    image_url = Column(Text, nullable=True)
    size_gb = Column(Numeric(8, 2), nullable=False)
    status = Column(String(20), nullable=False, default="available", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Flashdisk(Base):
    __tablename__ = "flashdisks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    capacity_gb = Column(Numeric(8, 2), nullable=False)
    # usable space; always below the label capacity on real media
    real_capacity_gb = Column(Numeric(8, 2), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(50), nullable=False, unique=True, index=True)
    user_name = Column(String(100), nullable=False)
    user_address = Column(Text, nullable=False)
    flashdisk_id = Column(Integer, ForeignKey("flashdisks.id"), nullable=False, index=True)
    total_size_gb = Column(Numeric(8, 2), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    flashdisk = relationship("Flashdisk", lazy="joined")
    lines = relationship(
        "TransactionGame",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionGame.id",
        lazy="selectin",
    )

    @property
    def flashdisk_name(self) -> str | None:
        return self.flashdisk.name if self.flashdisk else None

    @property
    def real_capacity_gb(self):
        return self.flashdisk.real_capacity_gb if self.flashdisk else None

    @property
    def game_names(self) -> str:
        return ", ".join(line.name for line in self.lines)

    @property
    def games(self) -> list["TransactionGame"]:
        return list(self.lines)


class TransactionGame(Base):
    """One ordered game. Name/category/size/image are copied at order time so
    history survives later catalog edits or deletes."""

    __tablename__ = "transaction_games"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(
        String(50), ForeignKey("transactions.transaction_id", ondelete="CASCADE"), nullable=False, index=True
    )
    game_id = Column(Integer, ForeignKey("games.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    size_gb = Column(Numeric(8, 2), nullable=False)
    image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = relationship("Transaction", back_populates="lines")
