"""Import orchestration: normalize, merge and persist a user's trade history."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence

from app.config import AppSettings, get_settings
from app.core.telemetry import import_span, record_import
from app.providers.broker import BrokerClient, BrokerServiceError
from app.services.journal_store import TradeGroupStore, UploadRecord
from trade_journal import stats
from trade_journal.matcher import match_groups
from trade_journal.matcher import open_positions as residual_positions
from trade_journal.merge import count_transactions, filter_by_exec_range, merge_transactions, remove_origin
from trade_journal.models import ClosedTrade, GroupKey, TradeGroup
from trade_journal.normalizers import NormalizationResult, normalize_broker_transactions, normalize_manual_export

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    """Outcome of one import; partial failures still count as success."""

    success: bool
    source: str
    processed: int = 0
    imported: int = 0
    duplicates: int = 0
    skipped_currency: int = 0
    skipped_invalid: int = 0
    accounts_synced: int = 0
    accounts_failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def absorb(self, result: NormalizationResult) -> None:
        self.processed += result.processed
        self.skipped_currency += result.skipped_currency
        self.skipped_invalid += result.skipped_invalid
        self.errors.extend(result.errors)


@dataclass(frozen=True)
class JournalReport:
    metrics: stats.PerformanceMetrics
    monthly: stats.MonthlySummary
    pnl_by_symbol: dict[str, Decimal]
    trades_by_hour: list[int]


def broker_origin(account_number: str) -> str:
    return f"broker:{account_number}"


class JournalService:
    """Serializes each user's imports and derives trades from the stored groups."""

    def __init__(self, store: TradeGroupStore, settings: AppSettings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        # Locks live only while an import for that user holds or awaits them
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _merge_and_save(
        self,
        user_id: str,
        result: NormalizationResult,
        origin: str,
        summary: ImportSummary,
    ) -> None:
        existing = await self._store.load(user_id)
        merged = merge_transactions(
            existing,
            result.transactions,
            origin=origin,
            blocked_symbols=self._settings.blocked_group_symbols,
        )
        await self._store.save(user_id, merged.groups)
        summary.absorb(result)
        summary.imported += merged.added
        summary.duplicates += merged.duplicates
        record_import(
            summary.source,
            processed=result.processed,
            skipped=result.skipped,
            added=merged.added,
        )

    async def import_spreadsheet(
        self,
        user_id: str,
        filename: str,
        rows: Sequence[Sequence[Any]],
    ) -> ImportSummary:
        """Import a manual export; raises ``SpreadsheetFormatError`` on structural problems."""

        with import_span("spreadsheet", user_id, filename=filename):
            result = normalize_manual_export(rows, tz=self._settings.tzinfo)
            summary = ImportSummary(success=True, source="spreadsheet")
            async with self._lock(user_id):
                await self._merge_and_save(user_id, result, filename, summary)
                await self._store.record_upload(user_id, filename, len(result.transactions))
        logger.info(
            "Imported %s for user %s: %d new, %d duplicates, %d skipped",
            filename,
            user_id,
            summary.imported,
            summary.duplicates,
            result.skipped,
        )
        return summary

    async def sync_broker(
        self,
        user_id: str,
        client: BrokerClient,
        access_token: str,
        *,
        now: datetime | None = None,
    ) -> ImportSummary:
        """Pull the recent window for every account; one failing account does not stop the rest."""

        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=self._settings.broker_sync_window_days)
        accounts = await client.list_accounts(access_token)
        summary = ImportSummary(success=True, source="broker")
        with import_span("broker", user_id, accounts=len(accounts)) as span:
            async with self._lock(user_id):
                for account in accounts:
                    try:
                        records = await client.fetch_transactions(
                            access_token,
                            account.hash_value,
                            start,
                            end,
                            self._settings.broker_transaction_types,
                        )
                    except BrokerServiceError as exc:
                        logger.warning("Broker sync failed for account %s: %s", account.account_number, exc)
                        summary.accounts_failed.append(account.account_number)
                        summary.errors.append(f"{account.account_number}: {exc}")
                        continue
                    result = normalize_broker_transactions(records, tz=self._settings.tzinfo)
                    await self._merge_and_save(user_id, result, broker_origin(account.account_number), summary)
                    summary.accounts_synced += 1
            span.set_attribute("journal.import.accounts_failed", len(summary.accounts_failed))
        summary.success = summary.accounts_synced > 0 or not accounts
        logger.info(
            "Broker sync for user %s: %d accounts synced, %d failed, %d new transactions",
            user_id,
            summary.accounts_synced,
            len(summary.accounts_failed),
            summary.imported,
        )
        return summary

    async def delete_upload(self, user_id: str, filename: str) -> int:
        """Drop a spreadsheet upload and every transaction only it contributed."""

        async with self._lock(user_id):
            groups = await self._store.load(user_id)
            remaining = remove_origin(groups, filename)
            removed = count_transactions(groups) - count_transactions(remaining)
            await self._store.save(user_id, remaining)
            await self._store.delete_upload(user_id, filename)
        logger.info("Removed upload %s for user %s (%d transactions)", filename, user_id, removed)
        return removed

    async def list_uploads(self, user_id: str) -> list[UploadRecord]:
        return await self._store.list_uploads(user_id)

    async def groups(self, user_id: str) -> list[TradeGroup]:
        return await self._store.load(user_id)

    async def closed_trades(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[ClosedTrade]:
        """Match the stored groups, optionally restricted to legs executed within ``[start, end]``."""

        groups = filter_by_exec_range(await self._store.load(user_id), start, end)
        return match_groups(
            groups,
            option_multiplier=self._settings.option_contract_multiplier,
            equity_multiplier=self._settings.equity_multiplier,
        )

    async def journal_report(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> JournalReport:
        trades = await self.closed_trades(user_id, start, end)
        return JournalReport(
            metrics=stats.performance_metrics(trades),
            monthly=stats.monthly_summary(trades),
            pnl_by_symbol=stats.pnl_by_symbol(trades),
            trades_by_hour=stats.trades_by_hour(trades, self._settings.tzinfo),
        )

    async def open_positions(self, user_id: str) -> dict[GroupKey, int]:
        return residual_positions(await self._store.load(user_id))


__all__ = ["ImportSummary", "JournalReport", "JournalService", "broker_origin"]
