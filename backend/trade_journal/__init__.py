"""Core trade reconstruction engine for the trade journal."""

from .matcher import match_group, match_groups, match_transactions, open_positions
from .merge import MergeResult, filter_by_exec_range, merge_transactions, remove_origin
from .models import (
    ClosedTrade,
    GroupKey,
    InstrumentType,
    PositionEffect,
    Side,
    TradeGroup,
    Transaction,
)
from .normalizers import (
    NormalizationResult,
    SpreadsheetFormatError,
    normalize_broker_transactions,
    normalize_manual_export,
)

__all__ = [
    "ClosedTrade",
    "GroupKey",
    "InstrumentType",
    "PositionEffect",
    "Side",
    "TradeGroup",
    "Transaction",
    "NormalizationResult",
    "SpreadsheetFormatError",
    "normalize_manual_export",
    "normalize_broker_transactions",
    "MergeResult",
    "merge_transactions",
    "remove_origin",
    "filter_by_exec_range",
    "match_transactions",
    "match_group",
    "match_groups",
    "open_positions",
]
