"""Persistence for trade groups and the spreadsheet upload log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Protocol, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import TradeGroupRecord, UploadedFile
from trade_journal.models import (
    GroupKey,
    InstrumentType,
    PositionEffect,
    Side,
    TradeGroup,
    Transaction,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRecord:
    filename: str
    row_count: int
    imported_at: datetime


# JSON codec

def transaction_to_dict(tx: Transaction) -> dict[str, Any]:
    return {
        "exec_time": tx.exec_time.isoformat(),
        "trade_date": tx.trade_date.isoformat(),
        "symbol": tx.symbol,
        "strike": str(tx.strike),
        "expiration": tx.expiration.isoformat() if tx.expiration else None,
        "side": tx.side.value,
        "quantity": tx.quantity,
        "price": str(tx.price),
        "pos_effect": tx.pos_effect.value,
        "order_type": tx.order_type,
        "type": tx.type.value,
        "source_id": tx.source_id,
        "asset_type": tx.asset_type,
    }


def transaction_from_dict(payload: dict[str, Any]) -> Transaction:
    expiration = payload.get("expiration")
    return Transaction(
        exec_time=datetime.fromisoformat(payload["exec_time"]),
        trade_date=date.fromisoformat(payload["trade_date"]),
        symbol=payload["symbol"],
        strike=Decimal(str(payload.get("strike", "0"))),
        expiration=date.fromisoformat(expiration) if expiration else None,
        side=Side(payload["side"]),
        quantity=int(payload["quantity"]),
        price=Decimal(str(payload["price"])),
        pos_effect=PositionEffect(payload["pos_effect"]),
        order_type=payload.get("order_type", ""),
        type=InstrumentType(payload.get("type", InstrumentType.UNKNOWN.value)),
        source_id=payload["source_id"],
        asset_type=payload.get("asset_type", ""),
    )


def origins_to_dict(group: TradeGroup) -> dict[str, list[str]]:
    return {source_id: sorted(tags) for source_id, tags in group.origins.items()}


def group_from_record(record: TradeGroupRecord) -> TradeGroup:
    key = GroupKey(record.symbol, Decimal(str(record.strike or 0)), record.expiration)
    return TradeGroup(
        key=key,
        transactions=tuple(transaction_from_dict(item) for item in record.transactions or []),
        origins={source_id: frozenset(tags) for source_id, tags in (record.origins or {}).items()},
    )


def group_to_record(user_id: str, group: TradeGroup) -> TradeGroupRecord:
    return TradeGroupRecord(
        user_id=user_id,
        symbol=group.key.symbol,
        strike=group.key.strike,
        expiration=group.key.expiration,
        transactions=[transaction_to_dict(tx) for tx in group.transactions],
        origins=origins_to_dict(group),
    )


class TradeGroupStore(Protocol):
    """Per-user storage of trade groups and the uploads that fed them."""

    async def load(self, user_id: str) -> list[TradeGroup]: ...

    async def save(self, user_id: str, groups: Sequence[TradeGroup]) -> None: ...

    async def record_upload(self, user_id: str, filename: str, row_count: int) -> UploadRecord: ...

    async def list_uploads(self, user_id: str) -> list[UploadRecord]: ...

    async def delete_upload(self, user_id: str, filename: str) -> bool: ...


class InMemoryTradeGroupStore:
    """Dictionary-backed store used by tests and local experiments."""

    def __init__(self) -> None:
        self._groups: dict[str, list[TradeGroup]] = {}
        self._uploads: dict[str, dict[str, UploadRecord]] = {}

    async def load(self, user_id: str) -> list[TradeGroup]:
        return list(self._groups.get(user_id, []))

    async def save(self, user_id: str, groups: Sequence[TradeGroup]) -> None:
        self._groups[user_id] = list(groups)

    async def record_upload(self, user_id: str, filename: str, row_count: int) -> UploadRecord:
        record = UploadRecord(filename=filename, row_count=row_count, imported_at=datetime.now(timezone.utc))
        self._uploads.setdefault(user_id, {})[filename] = record
        return record

    async def list_uploads(self, user_id: str) -> list[UploadRecord]:
        uploads = self._uploads.get(user_id, {})
        return sorted(uploads.values(), key=lambda item: item.imported_at, reverse=True)

    async def delete_upload(self, user_id: str, filename: str) -> bool:
        return self._uploads.get(user_id, {}).pop(filename, None) is not None


class SqlTradeGroupStore:
    """SQLAlchemy-backed store; each ``save`` swaps a user's rows in one transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, user_id: str) -> list[TradeGroup]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TradeGroupRecord)
                .where(TradeGroupRecord.user_id == user_id)
                .order_by(TradeGroupRecord.id)
            )
            return [group_from_record(record) for record in result.scalars().all()]

    async def save(self, user_id: str, groups: Sequence[TradeGroup]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(TradeGroupRecord).where(TradeGroupRecord.user_id == user_id))
                session.add_all(group_to_record(user_id, group) for group in groups)
        logger.debug("Persisted %d trade groups for user %s", len(groups), user_id)

    async def record_upload(self, user_id: str, filename: str, row_count: int) -> UploadRecord:
        async with self._session_factory() as session:
            async with session.begin():
                existing = (
                    await session.execute(
                        select(UploadedFile).where(
                            UploadedFile.user_id == user_id,
                            UploadedFile.filename == filename,
                        )
                    )
                ).scalars().first()
                now = datetime.now(timezone.utc)
                if existing is None:
                    existing = UploadedFile(user_id=user_id, filename=filename, row_count=row_count, imported_at=now)
                    session.add(existing)
                else:
                    existing.row_count = row_count
                    existing.imported_at = now
            return UploadRecord(filename=filename, row_count=row_count, imported_at=now)

    async def list_uploads(self, user_id: str) -> list[UploadRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UploadedFile)
                .where(UploadedFile.user_id == user_id)
                .order_by(UploadedFile.imported_at.desc())
            )
            return [
                UploadRecord(filename=row.filename, row_count=row.row_count, imported_at=row.imported_at)
                for row in result.scalars().all()
            ]

    async def delete_upload(self, user_id: str, filename: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(UploadedFile).where(
                        UploadedFile.user_id == user_id,
                        UploadedFile.filename == filename,
                    )
                )
            return bool(result.rowcount)


__all__ = [
    "UploadRecord",
    "TradeGroupStore",
    "InMemoryTradeGroupStore",
    "SqlTradeGroupStore",
    "transaction_to_dict",
    "transaction_from_dict",
    "group_from_record",
    "group_to_record",
]
