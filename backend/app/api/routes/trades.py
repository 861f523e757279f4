"""Closed trades and the calendar, dashboard and report views built on them."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.dependencies.context import RequestContext, get_journal_service, get_request_context
from app.schemas import (
    ClosedTradeSchema,
    CumulativePointSchema,
    DailySummarySchema,
    JournalReportSchema,
    MonthlySummarySchema,
    OpenPositionSchema,
    PerformanceMetricsSchema,
    PeriodSummarySchema,
    WeeklySummarySchema,
)
from app.services.imports import JournalService
from trade_journal import stats

router = APIRouter()


class DateRange:
    def __init__(
        self,
        start: date | None = Query(default=None, description="First execution day to include"),
        end: date | None = Query(default=None, description="Last execution day to include"),
    ) -> None:
        if start and end and start > end:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
        self.start = start
        self.end = end


def _serialize_day(day: stats.DailySummary) -> DailySummarySchema:
    return DailySummarySchema(
        day=day.date,
        summary=PeriodSummarySchema.model_validate(day.summary),
        trades=[ClosedTradeSchema.model_validate(trade) for trade in day.trades],
    )


@router.get("", response_model=list[ClosedTradeSchema])
async def list_trades(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[ClosedTradeSchema]:
    trades = await service.closed_trades(context.user_id, window.start, window.end)
    return [ClosedTradeSchema.model_validate(trade) for trade in trades]


@router.get("/daily", response_model=list[DailySummarySchema])
async def daily_calendar(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[DailySummarySchema]:
    trades = await service.closed_trades(context.user_id, window.start, window.end)
    return [_serialize_day(day) for day in stats.summarize_by_day(trades)]


@router.get("/weekly", response_model=list[WeeklySummarySchema])
async def weekly_review(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[WeeklySummarySchema]:
    trades = await service.closed_trades(context.user_id, window.start, window.end)
    return [
        WeeklySummarySchema(
            week_start=week.week_start,
            week_end=week.week_end,
            summary=PeriodSummarySchema.model_validate(week.summary),
            best_day=week.best_day,
            worst_day=week.worst_day,
            days=[_serialize_day(day) for day in week.days],
        )
        for week in stats.summarize_by_week(trades)
    ]


@router.get("/metrics", response_model=PerformanceMetricsSchema)
async def metrics(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> PerformanceMetricsSchema:
    trades = await service.closed_trades(context.user_id, window.start, window.end)
    return PerformanceMetricsSchema.model_validate(stats.performance_metrics(trades))


@router.get("/cumulative", response_model=list[CumulativePointSchema])
async def cumulative(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[CumulativePointSchema]:
    trades = await service.closed_trades(context.user_id, window.start, window.end)
    return [CumulativePointSchema.model_validate(point) for point in stats.cumulative_pnl(trades)]


@router.get("/report", response_model=JournalReportSchema)
async def report(
    window: DateRange = Depends(),
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> JournalReportSchema:
    result = await service.journal_report(context.user_id, window.start, window.end)
    return JournalReportSchema(
        metrics=PerformanceMetricsSchema.model_validate(result.metrics),
        monthly=MonthlySummarySchema.model_validate(result.monthly),
        pnl_by_symbol=result.pnl_by_symbol,
        trades_by_hour=result.trades_by_hour,
    )


@router.get("/open", response_model=list[OpenPositionSchema])
async def open_positions(
    context: RequestContext = Depends(get_request_context),
    service: JournalService = Depends(get_journal_service),
) -> list[OpenPositionSchema]:
    positions = await service.open_positions(context.user_id)
    return [
        OpenPositionSchema(symbol=key.symbol, strike=key.strike, expiration=key.expiration, quantity=quantity)
        for key, quantity in sorted(positions.items(), key=lambda item: item[0].label())
    ]


__all__ = ["router"]
