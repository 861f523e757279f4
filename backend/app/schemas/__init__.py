"""Pydantic schema exports."""

from .journal import (
    BrokerSyncRequest,
    ClosedTradeSchema,
    CumulativePointSchema,
    DailySummarySchema,
    ImportSummarySchema,
    JournalReportSchema,
    LotSchema,
    MonthlySummarySchema,
    OpenPositionSchema,
    PerformanceMetricsSchema,
    PeriodSummarySchema,
    TransactionSchema,
    UploadDeletedSchema,
    UploadedFileSchema,
    WeeklySummarySchema,
)

__all__ = [
    "BrokerSyncRequest",
    "ClosedTradeSchema",
    "CumulativePointSchema",
    "DailySummarySchema",
    "ImportSummarySchema",
    "JournalReportSchema",
    "LotSchema",
    "MonthlySummarySchema",
    "OpenPositionSchema",
    "PerformanceMetricsSchema",
    "PeriodSummarySchema",
    "TransactionSchema",
    "UploadDeletedSchema",
    "UploadedFileSchema",
    "WeeklySummarySchema",
]
