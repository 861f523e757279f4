"""Convert raw brokerage records into canonical ``Transaction`` objects.

Two sources are supported:

* the "Account Trade History" section of a manual spreadsheet export, handed
  over as a 2-D list of cell values;
* broker API transaction payloads whose economic legs live under
  ``transferItems``.

Both normalizers follow a partial-success policy. A malformed row or leg is
zero-defaulted or skipped and counted, and never aborts the import. Only an
input whose overall structure cannot be recognised raises.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Sequence

from .models import GroupKey, InstrumentType, PositionEffect, Side, Transaction

logger = logging.getLogger(__name__)

SECTION_MARKER = "Account Trade History"
EXCEL_EPOCH = date(1899, 12, 30)
UNKNOWN_SYMBOL = "UNKNOWN"

_EXEC_TIME_FORMATS = ("%m/%d/%y %H:%M:%S", "%m/%d/%Y %H:%M:%S", "%m/%d/%y %H:%M", "%m/%d/%Y %H:%M")
_EXPIRATION_FORMATS = ("%d %b %y", "%d %b %Y", "%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%d %m %Y")
_SKIPPED_ASSET_TYPES = {"", "CURRENCY"}
_EQUITY_LABELS = {"STOCK", "ETF", "EQUITY"}
_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


class SpreadsheetFormatError(ValueError):
    """Raised when an export does not contain a recognisable trade section."""


@dataclass
class NormalizationResult:
    """Transactions produced by one normalizer run plus bookkeeping counters."""

    transactions: list[Transaction] = field(default_factory=list)
    processed: int = 0
    skipped_currency: int = 0
    skipped_invalid: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_currency + self.skipped_invalid


# Scalar coercion -----------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip().replace(",", "").replace("$", "")
        if not text:
            return Decimal("0")
        try:
            result = Decimal(text)
        except InvalidOperation:
            return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def _to_quantity(value: Any) -> int:
    """Parse a signed export quantity such as ``+10`` into its integer value."""

    if _is_number(value):
        number = _to_decimal(value)
    else:
        number = _to_decimal(str(value or "").strip().lstrip("+"))
    return int(number)


def _localize(moment: datetime, tz: tzinfo) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment


# Date handling -------------------------------------------------------------

def excel_serial_to_datetime(serial: float, tz: tzinfo) -> datetime:
    """Convert a spreadsheet date serial into an aware datetime.

    The integer part counts days from the 1899-12-30 epoch. The fraction is a
    share of 24 hours, rounded to the nearest second.
    """

    days = int(serial)
    seconds = int(round((serial - days) * 86400))
    naive = datetime.combine(EXCEL_EPOCH + timedelta(days=days), time()) + timedelta(seconds=seconds)
    return naive.replace(tzinfo=tz)


def parse_exec_time(value: Any, tz: tzinfo) -> Optional[datetime]:
    """Resolve an export ``Exec Time`` cell given as a serial, datetime or text."""

    if _is_number(value):
        return excel_serial_to_datetime(float(value), tz)
    if isinstance(value, datetime):
        return _localize(value.replace(microsecond=0), tz)
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return excel_serial_to_datetime(float(text), tz)
    except ValueError:
        pass
    for fmt in _EXEC_TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    return None


def parse_expiration(value: Any) -> Optional[date]:
    if value is None or isinstance(value, bool):
        return None
    if _is_number(value):
        if value <= 0:
            return None
        return EXCEL_EPOCH + timedelta(days=int(value))
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text or text.upper() == "N/A":
        return None
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _EXPIRATION_FORMATS:
        try:
            return datetime.strptime(text.title(), fmt).date()
        except ValueError:
            continue
    logger.debug("Unrecognised expiration %r treated as non-option", value)
    return None


def parse_broker_time(value: Any) -> Optional[datetime]:
    """Parse broker ISO timestamps such as ``2024-03-01T14:30:00+0000``."""

    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _OFFSET_RE.sub(r"\1:\2", text)
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _instrument_type_from_label(label: Any) -> InstrumentType:
    text = str(label or "").strip().upper()
    if text in ("CALL", "PUT"):
        return InstrumentType(text)
    if text in _EQUITY_LABELS:
        return InstrumentType.EQUITY
    return InstrumentType.UNKNOWN


# Manual spreadsheet exports ------------------------------------------------

@dataclass(frozen=True)
class ManualExportRow:
    """One data row of the trade history section, keyed by header name."""

    index: int
    cells: Mapping[str, Any]

    def get(self, column: str) -> Any:
        value = self.cells.get(column)
        if isinstance(value, str):
            value = value.strip()
        return value


def _manual_source_id(
    *,
    symbol: str,
    strike: Decimal,
    expiration: Optional[date],
    exec_time: datetime,
    side: Side,
    quantity: int,
    price: Decimal,
    pos_effect: PositionEffect,
    order_type: str,
    index: int,
) -> str:
    parts = (
        symbol,
        f"{strike.normalize():f}",
        expiration.isoformat() if expiration else "N/A",
        exec_time.replace(microsecond=0).isoformat(),
        side.value,
        str(quantity),
        f"{price.normalize():f}",
        pos_effect.value,
        order_type,
        str(index),
    )
    return "|".join(parts)


def extract_trade_history(rows: Sequence[Sequence[Any]]) -> list[ManualExportRow]:
    """Locate the trade history section and map each data row by header."""

    start = next(
        (i for i, row in enumerate(rows) if row and str(row[0] or "").strip() == SECTION_MARKER),
        None,
    )
    if start is None or start + 1 >= len(rows):
        raise SpreadsheetFormatError(f"{SECTION_MARKER} section not found in the export")

    headers = [str(h).strip() if h is not None else "" for h in rows[start + 1][1:]]
    mapped: list[ManualExportRow] = []
    for index, row in enumerate(rows[start + 2:]):
        cells = list(row[1:])
        if not cells:
            continue
        identifier = cells[0]
        if not (_is_number(identifier) or (isinstance(identifier, str) and identifier.strip())):
            continue
        cells.extend([None] * (len(headers) - len(cells)))
        mapped.append(ManualExportRow(index=index, cells=dict(zip(headers, cells))))
    return mapped


def _normalize_manual_row(row: ManualExportRow, tz: tzinfo) -> Optional[Transaction]:
    exec_time = parse_exec_time(row.get("Exec Time"), tz)
    if exec_time is None:
        return None
    symbol = str(row.get("Symbol") or UNKNOWN_SYMBOL).upper()
    side_label = str(row.get("Side") or "").upper()
    side = Side(side_label) if side_label in ("BUY", "SELL") else Side.NA
    strike = _to_decimal(row.get("Strike"))
    expiration = parse_expiration(row.get("Exp"))
    quantity = _to_quantity(row.get("Qty"))
    price = abs(_to_decimal(row.get("Price")))
    pos_effect = PositionEffect.from_text(row.get("Pos Effect"))
    order_type = str(row.get("Order Type") or "N/A")
    return Transaction(
        exec_time=exec_time,
        trade_date=exec_time.date(),
        symbol=symbol,
        strike=strike,
        expiration=expiration,
        side=side,
        quantity=abs(quantity),
        price=price,
        pos_effect=pos_effect,
        order_type=order_type,
        type=_instrument_type_from_label(row.get("Type")),
        asset_type=str(row.get("Type") or "").upper(),
        source_id=_manual_source_id(
            symbol=symbol,
            strike=strike,
            expiration=expiration,
            exec_time=exec_time,
            side=side,
            quantity=quantity,
            price=price,
            pos_effect=pos_effect,
            order_type=order_type,
            index=row.index,
        ),
    )


def normalize_manual_export(rows: Sequence[Sequence[Any]], *, tz: tzinfo) -> NormalizationResult:
    """Normalize the trade history section of a spreadsheet export."""

    result = NormalizationResult()
    for row in extract_trade_history(rows):
        result.processed += 1
        try:
            tx = _normalize_manual_row(row, tz)
        except (ArithmeticError, ValueError, TypeError) as exc:
            logger.debug("Skipping malformed export row %d: %s", row.index, exc)
            result.skipped_invalid += 1
            result.errors.append(f"row {row.index}: {exc}")
            continue
        if tx is None:
            logger.debug("Skipping export row %d without a usable exec time", row.index)
            result.skipped_invalid += 1
            continue
        result.transactions.append(tx)
    logger.info(
        "Normalized %d export rows into %d transactions (%d skipped)",
        result.processed,
        len(result.transactions),
        result.skipped,
    )
    return result


# Broker API payloads -------------------------------------------------------

@dataclass(frozen=True)
class BrokerApiLeg:
    """One transfer item together with the identity of its parent record."""

    activity_id: Optional[str]
    time: Any
    item: Mapping[str, Any]
    leg_index: int
    leg_count: int

    @property
    def instrument(self) -> Mapping[str, Any]:
        return _instrument_of(self.item)

    @property
    def asset_type(self) -> str:
        return _asset_type_of(self.item)


def _instrument_of(item: Mapping[str, Any]) -> Mapping[str, Any]:
    instrument = item.get("instrument")
    return instrument if isinstance(instrument, Mapping) else {}


def _asset_type_of(item: Mapping[str, Any]) -> str:
    return str(_instrument_of(item).get("assetType") or "").strip().upper()


def _iter_broker_legs(records: Iterable[Mapping[str, Any]]) -> Iterable[BrokerApiLeg]:
    for record in records:
        if not isinstance(record, Mapping):
            continue
        items = record.get("transferItems") or []
        if not isinstance(items, list):
            continue
        activity_id = record.get("activityId") or record.get("transactionId")
        items = [item for item in items if isinstance(item, Mapping)]
        trade_items = [item for item in items if _asset_type_of(item) not in _SKIPPED_ASSET_TYPES]
        ordinal = {id(item): n for n, item in enumerate(trade_items)}
        for item in items:
            yield BrokerApiLeg(
                activity_id=str(activity_id) if activity_id not in (None, "") else None,
                time=record.get("time") or record.get("tradeDate"),
                item=item,
                leg_index=ordinal.get(id(item), 0),
                leg_count=len(trade_items),
            )


def _broker_price(item: Mapping[str, Any], amount: Decimal) -> Decimal:
    price = _to_decimal(item.get("price"))
    if price:
        return abs(price)
    cost = _to_decimal(item.get("cost"))
    if cost and amount:
        return abs(cost / amount)
    return Decimal("0")


def _broker_type(leg: BrokerApiLeg) -> InstrumentType:
    if leg.asset_type == "EQUITY":
        return InstrumentType.EQUITY
    put_call = str(leg.instrument.get("putCall") or "").strip().upper()
    if put_call in ("CALL", "PUT"):
        return InstrumentType(put_call)
    try:
        return InstrumentType(leg.asset_type)
    except ValueError:
        return InstrumentType.UNKNOWN


def _normalize_broker_leg(leg: BrokerApiLeg) -> Optional[Transaction]:
    exec_time = parse_broker_time(leg.time)
    if exec_time is None:
        return None
    instrument = leg.instrument
    amount = _to_decimal(leg.item.get("amount"))
    if amount > 0:
        side = Side.BUY
    elif amount < 0:
        side = Side.SELL
    else:
        side = Side.NA
    symbol = str(instrument.get("underlyingSymbol") or instrument.get("symbol") or UNKNOWN_SYMBOL).strip().upper()
    if leg.activity_id:
        source_id = leg.activity_id
        if leg.leg_count > 1:
            source_id = f"{source_id}:{leg.leg_index}"
    else:
        source_id = f"{exec_time.isoformat()}|{symbol}|{side.value}"
    return Transaction(
        exec_time=exec_time,
        trade_date=exec_time.date(),
        symbol=symbol,
        strike=_to_decimal(instrument.get("strikePrice")),
        expiration=parse_expiration(instrument.get("expirationDate")),
        side=side,
        quantity=int(abs(amount)),
        price=_broker_price(leg.item, amount),
        pos_effect=PositionEffect.from_text(leg.item.get("positionEffect")),
        order_type=str(leg.item.get("orderType") or "N/A"),
        type=_broker_type(leg),
        source_id=source_id,
        asset_type=leg.asset_type,
    )


def normalize_broker_transactions(
    records: Iterable[Mapping[str, Any]],
    *,
    tz: tzinfo | None = None,
) -> NormalizationResult:
    """Normalize broker transaction records, skipping cash settlement legs.

    When ``tz`` is given, exec times are converted into it so that
    ``trade_date`` follows the journal's calendar rather than UTC.
    """

    result = NormalizationResult()
    for leg in _iter_broker_legs(records):
        if leg.asset_type in _SKIPPED_ASSET_TYPES:
            result.skipped_currency += 1
            continue
        result.processed += 1
        try:
            tx = _normalize_broker_leg(leg)
        except (ArithmeticError, ValueError, TypeError) as exc:
            logger.debug("Skipping malformed broker leg of %s: %s", leg.activity_id, exc)
            result.skipped_invalid += 1
            result.errors.append(f"{leg.activity_id or 'leg'}: {exc}")
            continue
        if tx is None:
            logger.debug("Skipping broker leg of %s without a usable time", leg.activity_id)
            result.skipped_invalid += 1
            continue
        if tz is not None:
            local_time = tx.exec_time.astimezone(tz)
            tx = _replace_time(tx, local_time)
        result.transactions.append(tx)
    logger.info(
        "Normalized %d broker legs into %d transactions (%d currency legs skipped)",
        result.processed,
        len(result.transactions),
        result.skipped_currency,
    )
    return result


def _replace_time(tx: Transaction, exec_time: datetime) -> Transaction:
    return replace(tx, exec_time=exec_time, trade_date=exec_time.date())


def group_transactions(transactions: Iterable[Transaction]) -> dict[GroupKey, list[Transaction]]:
    """Group transactions by ``(symbol, strike, expiration)`` in first-seen order."""

    grouped: dict[GroupKey, list[Transaction]] = {}
    for tx in transactions:
        grouped.setdefault(tx.group_key, []).append(tx)
    return grouped


__all__ = [
    "SECTION_MARKER",
    "SpreadsheetFormatError",
    "NormalizationResult",
    "ManualExportRow",
    "BrokerApiLeg",
    "excel_serial_to_datetime",
    "parse_exec_time",
    "parse_expiration",
    "parse_broker_time",
    "extract_trade_history",
    "normalize_manual_export",
    "normalize_broker_transactions",
    "group_transactions",
]
