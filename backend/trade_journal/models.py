"""Domain models shared by the normalizers, merger, matcher and stats."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Mapping, NamedTuple, Optional, Tuple

DEFAULT_OPTION_MULTIPLIER = 100
DEFAULT_EQUITY_MULTIPLIER = 1


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NA = "N/A"


class PositionEffect(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_text(cls, raw: object) -> "PositionEffect":
        """Resolve a broker or export label by substring.

        ``TO OPEN`` and ``OPENING`` are OPEN; ``TO CLOSE`` and ``CLOSING`` are CLOSE.
        """

        text = str(raw or "").upper()
        if "OPEN" in text:
            return cls.OPEN
        if "CLOS" in text:
            return cls.CLOSE
        return cls.UNKNOWN


class InstrumentType(str, Enum):
    EQUITY = "EQUITY"
    CALL = "CALL"
    PUT = "PUT"
    UNKNOWN = "UNKNOWN"


OPTION_TYPES = frozenset({InstrumentType.CALL, InstrumentType.PUT})


class GroupKey(NamedTuple):
    """Identity of a trade group: one option series or one equity."""

    symbol: str
    strike: Decimal
    expiration: Optional[date]

    def label(self) -> str:
        expiration = self.expiration.isoformat() if self.expiration else "N/A"
        return f"{self.symbol}-{self.strike.normalize():f}-{expiration}"


@dataclass(frozen=True)
class Transaction:
    """A normalized execution leg.

    ``source_id`` identifies the broker-side event and is the only field the
    merger looks at when deciding whether a leg is already known.
    """

    exec_time: datetime
    trade_date: date
    symbol: str
    strike: Decimal
    expiration: Optional[date]
    side: Side
    quantity: int
    price: Decimal
    pos_effect: PositionEffect
    order_type: str
    type: InstrumentType
    source_id: str
    # Raw instrument label from the source, e.g. OPTION or COLLECTIVE_INVESTMENT
    asset_type: str = ""

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.symbol, self.strike, self.expiration)

    @property
    def is_option(self) -> bool:
        return self.type in OPTION_TYPES or self.asset_type == "OPTION"


@dataclass(frozen=True)
class TradeGroup:
    """All transactions for one ``GroupKey``, in insertion order."""

    key: GroupKey
    transactions: Tuple[Transaction, ...] = ()
    origins: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @property
    def symbol(self) -> str:
        return self.key.symbol

    def source_ids(self) -> set[str]:
        return {tx.source_id for tx in self.transactions}


@dataclass(frozen=True)
class Lot:
    """A buy or sell leg waiting in a position queue."""

    quantity: int
    price: Decimal
    trade_date: date
    exec_time: datetime


@dataclass(frozen=True)
class ClosedTrade:
    """A round trip: every open lot of a position drained by its closes."""

    symbol: str
    strike: Decimal
    expiration: Optional[date]
    type: InstrumentType
    trade_date: date
    first_buy_exec_time: datetime
    last_sell_exec_time: datetime
    open_quantity: int
    total_buy_cost: Decimal
    total_sell_proceeds: Decimal
    profit_loss: Decimal
    net_roi: Decimal
    buy_lots: Tuple[Lot, ...] = ()
    sell_lots: Tuple[Lot, ...] = ()

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.symbol, self.strike, self.expiration)


def contract_multiplier(
    tx: Transaction,
    *,
    option_multiplier: int = DEFAULT_OPTION_MULTIPLIER,
    equity_multiplier: int = DEFAULT_EQUITY_MULTIPLIER,
) -> int:
    """Return the notional multiplier for the instrument ``tx`` trades.

    Calls, puts and legs the source labels OPTION are priced per share of a
    standard contract. Everything else, ETFs and funds included, trades in
    raw shares.
    """

    if tx.is_option:
        return option_multiplier
    return equity_multiplier


__all__ = [
    "Side",
    "PositionEffect",
    "InstrumentType",
    "GroupKey",
    "Transaction",
    "TradeGroup",
    "Lot",
    "ClosedTrade",
    "contract_multiplier",
    "DEFAULT_OPTION_MULTIPLIER",
    "DEFAULT_EQUITY_MULTIPLIER",
    "OPTION_TYPES",
]
