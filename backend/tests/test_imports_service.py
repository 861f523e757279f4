"""Import orchestration against the in-memory and SQL stores."""

from __future__ import annotations

import asyncio
import gc
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base import Base
from app.providers.broker import BrokerAccount, BrokerServiceError
from app.services.imports import JournalService
from app.services.journal_store import (
    InMemoryTradeGroupStore,
    SqlTradeGroupStore,
    transaction_from_dict,
    transaction_to_dict,
)
from trade_journal.models import GroupKey, TradeGroup
from trade_journal.normalizers import SpreadsheetFormatError, normalize_manual_export

HEADER = [None, "Exec Time", "Side", "Qty", "Pos Effect", "Symbol", "Exp", "Strike", "Type", "Price", "Order Type"]


def export(*legs):
    return [["Account Trade History"], HEADER, *legs]


def leg(exec_time, side, qty, effect, price, *, symbol="AAPL", exp="15 MAR 24", strike="150", kind="CALL"):
    return [None, exec_time, side, qty, effect, symbol, exp, strike, kind, price, "LMT"]


ROUND_TRIP = [
    leg("3/1/24 09:30:00", "BUY", "+10", "TO OPEN", "2.00"),
    leg("3/1/24 11:00:00", "SELL", "-10", "TO CLOSE", "3.00"),
]


class StubBroker:
    def __init__(self, records_by_hash, failing=()):
        self.records_by_hash = records_by_hash
        self.failing = set(failing)
        self.windows: list[tuple[datetime, datetime, str]] = []

    async def list_accounts(self, access_token):
        return [BrokerAccount(account_number=f"acct-{h}", hash_value=h) for h in self.records_by_hash]

    async def fetch_transactions(self, access_token, account_hash, start, end, types):
        self.windows.append((start, end, types))
        if account_hash in self.failing:
            raise BrokerServiceError("Broker API error 500: boom")
        return self.records_by_hash[account_hash]


def broker_leg(activity_id, amount, price, effect, time="2024-03-04T15:00:00+0000"):
    return {
        "activityId": activity_id,
        "time": time,
        "transferItems": [
            {"instrument": {"assetType": "CURRENCY", "symbol": "CURRENCY_USD"}, "amount": -0.65},
            {
                "instrument": {
                    "assetType": "OPTION",
                    "underlyingSymbol": "TSLA",
                    "putCall": "PUT",
                    "strikePrice": 180,
                    "expirationDate": "2024-03-15T20:00:00.000+00:00",
                },
                "amount": amount,
                "price": price,
                "positionEffect": effect,
            },
        ],
    }


async def test_spreadsheet_import_and_reimport_is_idempotent(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)

    first = await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))
    second = await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))

    assert first.success
    assert (first.processed, first.imported, first.duplicates) == (2, 2, 0)
    assert (second.imported, second.duplicates) == (0, 2)
    [trade] = await service.closed_trades("u1")
    assert trade.profit_loss == Decimal("1000.00")
    assert [upload.filename for upload in await service.list_uploads("u1")] == ["march.csv"]


async def test_users_are_isolated(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)

    await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))

    assert await service.closed_trades("u2") == []


async def test_structural_errors_propagate(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)

    with pytest.raises(SpreadsheetFormatError):
        await service.import_spreadsheet("u1", "bad.csv", [["nothing here"]])


async def test_delete_upload_removes_only_its_own_transactions(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)
    extra_open = leg("3/5/24 09:30:00", "BUY", "+1", "TO OPEN", "1.00")
    await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))
    await service.import_spreadsheet("u1", "march-copy.csv", export(*ROUND_TRIP, extra_open))

    removed = await service.delete_upload("u1", "march-copy.csv")

    assert removed == 1
    assert len(await service.closed_trades("u1")) == 1
    assert await service.open_positions("u1") == {}
    assert [upload.filename for upload in await service.list_uploads("u1")] == ["march.csv"]


async def test_broker_sync_tolerates_failing_accounts(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)
    broker = StubBroker(
        {
            "H1": [broker_leg(1, 2, 5.0, "OPENING"), broker_leg(2, -2, 6.5, "CLOSING", time="2024-03-05T15:00:00+0000")],
            "H2": [],
        },
        failing={"H2"},
    )
    now = datetime(2024, 3, 8, tzinfo=timezone.utc)

    summary = await service.sync_broker("u1", broker, "token", now=now)

    assert summary.success
    assert summary.accounts_synced == 1
    assert summary.accounts_failed == ["acct-H2"]
    assert summary.skipped_currency == 2
    assert summary.imported == 2
    assert broker.windows[0] == (now - timedelta(days=60), now, "TRADE")
    [trade] = await service.closed_trades("u1")
    assert trade.symbol == "TSLA"
    assert trade.profit_loss == Decimal("300.0")
    assert trade.trade_date == date(2024, 3, 4)


async def test_broker_sync_fails_when_every_account_fails(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)
    broker = StubBroker({"H1": []}, failing={"H1"})

    summary = await service.sync_broker("u1", broker, "token")

    assert not summary.success
    assert summary.accounts_failed == ["acct-H1"]


async def test_merges_purge_legacy_currency_groups(settings):
    store = InMemoryTradeGroupStore()
    junk = TradeGroup(key=GroupKey("CURRENCY_USD", Decimal("0"), None))
    await store.save("u1", [junk])
    service = JournalService(store, settings)

    await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))

    assert [group.key.symbol for group in await store.load("u1")] == ["AAPL"]


async def test_concurrent_imports_do_not_lose_updates(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)

    await asyncio.gather(
        service.import_spreadsheet("u1", "a.csv", export(ROUND_TRIP[0])),
        service.import_spreadsheet("u1", "b.csv", export(ROUND_TRIP[1], ROUND_TRIP[1])),
    )

    groups = await service.groups("u1")
    assert sum(len(group.transactions) for group in groups) == 3


async def test_journal_report(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)
    await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))

    report = await service.journal_report("u1")

    assert report.metrics.total_trades == 1
    assert report.monthly.months == {"2024-03": Decimal("1000.00")}
    assert report.pnl_by_symbol == {"AAPL": Decimal("1000.00")}
    assert report.trades_by_hour[9] == 1


def test_transaction_codec_round_trip(settings):
    [tx, _] = normalize_manual_export(export(*ROUND_TRIP), tz=settings.tzinfo).transactions

    assert transaction_from_dict(transaction_to_dict(tx)) == tx


async def test_sql_store_persists_groups_and_uploads(tmp_path: Path, settings):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'journal.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SqlTradeGroupStore(async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession))
    service = JournalService(store, settings)

    try:
        await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))
        await service.import_spreadsheet("u1", "march.csv", export(*ROUND_TRIP))

        [group] = await store.load("u1")
        assert group.key == GroupKey("AAPL", Decimal("150"), date(2024, 3, 15))
        assert len(group.transactions) == 2
        assert all(tags == frozenset({"march.csv"}) for tags in group.origins.values())
        [upload] = await store.list_uploads("u1")
        assert (upload.filename, upload.row_count) == ("march.csv", 2)

        assert await service.delete_upload("u1", "march.csv") == 2
        assert await store.load("u1") == []
        assert await store.list_uploads("u1") == []
    finally:
        await engine.dispose()


async def test_user_locks_are_released_after_imports(settings):
    service = JournalService(InMemoryTradeGroupStore(), settings)

    await asyncio.gather(*(
        service.import_spreadsheet(f"u{n}", "march.csv", export(*ROUND_TRIP)) for n in range(5)
    ))
    gc.collect()

    assert len(service._locks) == 0
