"""Pydantic schemas for journal imports, trades and reports."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from trade_journal.models import InstrumentType, PositionEffect, Side


class TransactionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    exec_time: datetime
    trade_date: date
    symbol: str
    strike: Decimal
    expiration: date | None = None
    side: Side
    quantity: int
    price: Decimal
    pos_effect: PositionEffect
    order_type: str
    type: InstrumentType
    source_id: str
    asset_type: str = ""


class LotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quantity: int
    price: Decimal
    trade_date: date
    exec_time: datetime


class ClosedTradeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    strike: Decimal
    expiration: date | None = None
    type: InstrumentType
    trade_date: date
    first_buy_exec_time: datetime
    last_sell_exec_time: datetime
    open_quantity: int
    total_buy_cost: Decimal
    total_sell_proceeds: Decimal
    profit_loss: Decimal
    net_roi: Decimal = Field(..., description="Return on buy cost, in percent")
    buy_lots: list[LotSchema] = Field(default_factory=list)
    sell_lots: list[LotSchema] = Field(default_factory=list)


class PeriodSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trade_count: int
    total_pl: Decimal
    wins: int
    losses: int
    neutral: int
    gross_profit: Decimal
    gross_loss: Decimal
    volume: int
    win_rate: Decimal
    profit_factor: Decimal | None = Field(
        default=None,
        allow_inf_nan=True,
        description="Gross profit over gross loss; Infinity without losses, null without trades",
    )


class DailySummarySchema(BaseModel):
    day: date
    summary: PeriodSummarySchema
    trades: list[ClosedTradeSchema] = Field(default_factory=list)


class WeeklySummarySchema(BaseModel):
    week_start: date
    week_end: date
    summary: PeriodSummarySchema
    best_day: Decimal
    worst_day: Decimal
    days: list[DailySummarySchema] = Field(default_factory=list)


class PerformanceMetricsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_trades: int
    total_pl: Decimal
    win_rate: Decimal
    expectancy: Decimal
    average_win: Decimal
    average_loss: Decimal
    win_loss_ratio: Decimal | None = None
    profit_factor: Decimal | None = Field(default=None, allow_inf_nan=True)


class CumulativePointSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    at: datetime
    value: Decimal


class MonthlySummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    months: dict[str, Decimal] = Field(default_factory=dict)
    best_month: str | None = None
    worst_month: str | None = None
    average: Decimal = Decimal("0")


class JournalReportSchema(BaseModel):
    metrics: PerformanceMetricsSchema
    monthly: MonthlySummarySchema
    pnl_by_symbol: dict[str, Decimal] = Field(default_factory=dict)
    trades_by_hour: list[int] = Field(default_factory=list)


class OpenPositionSchema(BaseModel):
    symbol: str
    strike: Decimal
    expiration: date | None = None
    quantity: int


class ImportSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    source: str
    processed: int = 0
    imported: int = 0
    duplicates: int = 0
    skipped_currency: int = 0
    skipped_invalid: int = 0
    accounts_synced: int = 0
    accounts_failed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class UploadedFileSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    row_count: int
    imported_at: datetime


class UploadDeletedSchema(BaseModel):
    filename: str
    removed: int


class BrokerSyncRequest(BaseModel):
    access_token: str = Field(..., min_length=1, description="OAuth bearer token for the broker API")
