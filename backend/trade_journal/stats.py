"""Stateless reductions over closed trades for calendars and dashboards."""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .models import ClosedTrade

ZERO = Decimal("0")
INFINITE_PROFIT_FACTOR = Decimal("Infinity")


def profit_factor(gross_profit: Decimal, gross_loss: Decimal) -> Optional[Decimal]:
    """Return gross profit over gross loss.

    Without losses the ratio is undefined: ``Infinity`` when there were
    winners and ``None`` when there was nothing to compare.
    """

    if gross_loss == 0:
        return INFINITE_PROFIT_FACTOR if gross_profit > 0 else None
    return gross_profit / gross_loss


def _percent(part: int, whole: int) -> Decimal:
    if not whole:
        return ZERO
    return Decimal(part) * Decimal("100") / Decimal(whole)


@dataclass(frozen=True)
class PeriodSummary:
    trade_count: int
    total_pl: Decimal
    wins: int
    losses: int
    neutral: int
    gross_profit: Decimal
    gross_loss: Decimal
    volume: int

    @property
    def profit_factor(self) -> Optional[Decimal]:
        return profit_factor(self.gross_profit, self.gross_loss)

    @property
    def win_rate(self) -> Decimal:
        return _percent(self.wins, self.trade_count)


def summarize(trades: Sequence[ClosedTrade]) -> PeriodSummary:
    gross_profit = sum((t.profit_loss for t in trades if t.profit_loss > 0), ZERO)
    gross_loss = abs(sum((t.profit_loss for t in trades if t.profit_loss < 0), ZERO))
    return PeriodSummary(
        trade_count=len(trades),
        total_pl=sum((t.profit_loss for t in trades), ZERO),
        wins=sum(1 for t in trades if t.profit_loss > 0),
        losses=sum(1 for t in trades if t.profit_loss < 0),
        neutral=sum(1 for t in trades if t.profit_loss == 0),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        volume=sum(t.open_quantity for t in trades),
    )


@dataclass(frozen=True)
class DailySummary:
    date: date
    summary: PeriodSummary
    trades: tuple[ClosedTrade, ...] = ()


@dataclass(frozen=True)
class WeeklySummary:
    week_start: date
    summary: PeriodSummary
    days: tuple[DailySummary, ...] = ()

    @property
    def week_end(self) -> date:
        return self.week_start + timedelta(days=6)

    @property
    def best_day(self) -> Decimal:
        return max((d.summary.total_pl for d in self.days), default=ZERO)

    @property
    def worst_day(self) -> Decimal:
        return min((d.summary.total_pl for d in self.days), default=ZERO)


def _group(trades: Iterable[ClosedTrade], key) -> "OrderedDict[date, list[ClosedTrade]]":
    buckets: Dict[date, list[ClosedTrade]] = {}
    for trade in trades:
        buckets.setdefault(key(trade), []).append(trade)
    return OrderedDict(sorted(buckets.items()))


def summarize_by_day(trades: Iterable[ClosedTrade]) -> List[DailySummary]:
    """Bucket trades by their open date, oldest day first."""

    return [
        DailySummary(date=day, summary=summarize(bucket), trades=tuple(bucket))
        for day, bucket in _group(trades, lambda t: t.trade_date).items()
    ]


def week_start(day: date) -> date:
    """Monday of the trading week containing ``day``; Sunday maps to the preceding Monday."""

    return day - timedelta(days=day.weekday())


def summarize_by_week(trades: Iterable[ClosedTrade]) -> List[WeeklySummary]:
    weeks: List[WeeklySummary] = []
    for monday, bucket in _group(trades, lambda t: week_start(t.trade_date)).items():
        weeks.append(
            WeeklySummary(
                week_start=monday,
                summary=summarize(bucket),
                days=tuple(summarize_by_day(bucket)),
            )
        )
    return weeks


@dataclass(frozen=True)
class PerformanceMetrics:
    total_trades: int
    total_pl: Decimal
    win_rate: Decimal
    expectancy: Decimal
    average_win: Decimal
    average_loss: Decimal
    win_loss_ratio: Optional[Decimal]
    profit_factor: Optional[Decimal]


def performance_metrics(trades: Sequence[ClosedTrade]) -> PerformanceMetrics:
    summary = summarize(trades)
    average_win = summary.gross_profit / summary.wins if summary.wins else ZERO
    average_loss = summary.gross_loss / summary.losses if summary.losses else ZERO
    return PerformanceMetrics(
        total_trades=summary.trade_count,
        total_pl=summary.total_pl,
        win_rate=summary.win_rate,
        expectancy=summary.total_pl / summary.trade_count if summary.trade_count else ZERO,
        average_win=average_win,
        average_loss=average_loss,
        win_loss_ratio=average_win / average_loss if average_loss else None,
        profit_factor=summary.profit_factor,
    )


@dataclass(frozen=True)
class CumulativePoint:
    at: datetime
    value: Decimal


def cumulative_pnl(trades: Iterable[ClosedTrade]) -> List[CumulativePoint]:
    """Running P&L by open time, starting from a zero point a day earlier."""

    ordered = sorted(trades, key=lambda t: t.first_buy_exec_time)
    if not ordered:
        return []
    points = [CumulativePoint(at=ordered[0].first_buy_exec_time - timedelta(days=1), value=ZERO)]
    running = ZERO
    for trade in ordered:
        running += trade.profit_loss
        points.append(CumulativePoint(at=trade.first_buy_exec_time, value=running))
    return points


def pnl_by_symbol(trades: Iterable[ClosedTrade]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for trade in trades:
        totals[trade.symbol] = totals.get(trade.symbol, ZERO) + trade.profit_loss
    return totals


def trades_by_hour(trades: Iterable[ClosedTrade], tz: tzinfo | None = None) -> List[int]:
    counts = [0] * 24
    for trade in trades:
        opened = trade.first_buy_exec_time
        if tz is not None:
            opened = opened.astimezone(tz)
        counts[opened.hour] += 1
    return counts


@dataclass(frozen=True)
class MonthlySummary:
    months: Dict[str, Decimal] = field(default_factory=dict)
    best_month: Optional[str] = None
    worst_month: Optional[str] = None
    average: Decimal = ZERO


def monthly_summary(trades: Iterable[ClosedTrade]) -> MonthlySummary:
    """P&L per ``YYYY-MM`` bucket of the open date plus best, worst and mean month."""

    months: Dict[str, Decimal] = {}
    for trade in sorted(trades, key=lambda t: t.trade_date):
        key = trade.trade_date.strftime("%Y-%m")
        months[key] = months.get(key, ZERO) + trade.profit_loss
    if not months:
        return MonthlySummary()
    return MonthlySummary(
        months=months,
        best_month=max(months, key=months.__getitem__),
        worst_month=min(months, key=months.__getitem__),
        average=sum(months.values(), ZERO) / len(months),
    )


__all__ = [
    "INFINITE_PROFIT_FACTOR",
    "profit_factor",
    "PeriodSummary",
    "summarize",
    "DailySummary",
    "WeeklySummary",
    "summarize_by_day",
    "summarize_by_week",
    "week_start",
    "PerformanceMetrics",
    "performance_metrics",
    "CumulativePoint",
    "cumulative_pnl",
    "pnl_by_symbol",
    "trades_by_hour",
    "MonthlySummary",
    "monthly_summary",
]
