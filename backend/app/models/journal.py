"""Persisted trade groups and the spreadsheet upload log."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Index, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class TradeGroupRecord(Base):
    """One row per (user, symbol, strike, expiration) holding the group's legs as JSON."""

    __tablename__ = "trade_group"
    __table_args__ = (
        Index("ix_trade_group_user", "user_id"),
        Index("ix_trade_group_user_symbol", "user_id", "symbol"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    symbol: Mapped[str] = mapped_column(String(64))
    strike: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    expiration: Mapped[date | None] = mapped_column(Date, nullable=True)
    transactions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    origins: Mapped[dict[str, list[str]]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UploadedFile(Base):
    __tablename__ = "uploaded_file"
    __table_args__ = (UniqueConstraint("user_id", "filename", name="uq_uploaded_file_user_filename"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    filename: Mapped[str] = mapped_column(String(255))
    row_count: Mapped[int] = mapped_column(Integer, default=0)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
