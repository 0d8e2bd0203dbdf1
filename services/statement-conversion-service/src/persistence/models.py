"""SQLAlchemy models for conversion history and per-user usage."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ConversionRecord(Base):
    """One successful conversion run, listed on the user's history."""

    __tablename__ = "conversions_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)

    # Comma-joined filenames of every file in the session.
    filename: Mapped[str] = mapped_column(String(2000), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="success")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class UserUsage(Base):
    """Conversion counter and quota for one user. A NULL limit means unlimited."""

    __tablename__ = "user_usage"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    conversions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversion_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
