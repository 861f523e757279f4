"""Round-trip reconstruction from a trade group's transaction history."""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Deque, Iterable, List, Sequence

from .models import (
    DEFAULT_EQUITY_MULTIPLIER,
    DEFAULT_OPTION_MULTIPLIER,
    ClosedTrade,
    GroupKey,
    Lot,
    PositionEffect,
    Side,
    TradeGroup,
    Transaction,
    contract_multiplier,
)

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


@dataclass
class _Position:
    """Running state of one group during a single matching pass."""

    total_quantity_opened: int = 0
    current_open_quantity: int = 0
    buy_lots: Deque[tuple[Lot, Transaction]] = field(default_factory=deque)
    sell_lots: Deque[Lot] = field(default_factory=deque)

    def open(self, tx: Transaction) -> None:
        self.buy_lots.append((_lot(tx), tx))
        self.total_quantity_opened += tx.quantity
        self.current_open_quantity += tx.quantity

    def close(self, tx: Transaction) -> None:
        quantity = abs(tx.quantity)
        self.sell_lots.append(_lot(tx, quantity))
        self.current_open_quantity -= quantity

    @property
    def is_flat(self) -> bool:
        return self.current_open_quantity == 0

    def reset(self) -> None:
        self.total_quantity_opened = 0
        self.current_open_quantity = 0


def _lot(tx: Transaction, quantity: int | None = None) -> Lot:
    return Lot(
        quantity=tx.quantity if quantity is None else quantity,
        price=tx.price,
        trade_date=tx.trade_date,
        exec_time=tx.exec_time,
    )


def _chronological(transactions: Sequence[Transaction]) -> List[Transaction]:
    # Ingestion index breaks exec_time ties so partial-fill attribution is reproducible.
    ordered = sorted(enumerate(transactions), key=lambda pair: (pair[1].exec_time, pair[0]))
    return [tx for _, tx in ordered]


def _close_cycle(
    position: _Position,
    *,
    option_multiplier: int,
    equity_multiplier: int,
) -> ClosedTrade | None:
    drained_buys: list[tuple[Lot, Transaction]] = []
    total_buy_quantity = 0
    total_buy_cost = Decimal("0")
    while position.buy_lots and total_buy_quantity < position.total_quantity_opened:
        lot, opening_tx = position.buy_lots.popleft()
        multiplier = contract_multiplier(
            opening_tx,
            option_multiplier=option_multiplier,
            equity_multiplier=equity_multiplier,
        )
        drained_buys.append((lot, opening_tx))
        total_buy_quantity += lot.quantity
        total_buy_cost += lot.quantity * lot.price * multiplier

    if not drained_buys:
        return None

    first_lot, first_tx = drained_buys[0]
    multiplier = contract_multiplier(
        first_tx,
        option_multiplier=option_multiplier,
        equity_multiplier=equity_multiplier,
    )
    drained_sells: list[Lot] = []
    total_sell_quantity = 0
    total_sell_proceeds = Decimal("0")
    while position.sell_lots and total_sell_quantity < total_buy_quantity:
        sell = position.sell_lots.popleft()
        drained_sells.append(sell)
        total_sell_quantity += sell.quantity
        total_sell_proceeds += sell.quantity * sell.price * multiplier

    profit_loss = total_sell_proceeds - total_buy_cost
    net_roi = profit_loss / total_buy_cost * _HUNDRED if total_buy_cost > 0 else Decimal("0")
    last_sell_time = drained_sells[-1].exec_time if drained_sells else first_lot.exec_time
    return ClosedTrade(
        symbol=first_tx.symbol,
        strike=first_tx.strike,
        expiration=first_tx.expiration,
        type=first_tx.type,
        trade_date=first_lot.trade_date,
        first_buy_exec_time=first_lot.exec_time,
        last_sell_exec_time=last_sell_time,
        open_quantity=total_buy_quantity,
        total_buy_cost=total_buy_cost,
        total_sell_proceeds=total_sell_proceeds,
        profit_loss=profit_loss,
        net_roi=net_roi,
        buy_lots=tuple(lot for lot, _ in drained_buys),
        sell_lots=tuple(drained_sells),
    )


def match_transactions(
    transactions: Sequence[Transaction],
    *,
    option_multiplier: int = DEFAULT_OPTION_MULTIPLIER,
    equity_multiplier: int = DEFAULT_EQUITY_MULTIPLIER,
) -> List[ClosedTrade]:
    """Replay one group's legs in time order and emit each flat-to-flat cycle.

    Only BUY/OPEN legs add to the position and only SELL/CLOSE legs reduce
    it. A cycle is emitted when the open quantity returns to exactly zero.
    Whatever is still open at the end of the stream is unrealized and is not
    reported.
    """

    position = _Position()
    trades: List[ClosedTrade] = []
    for tx in _chronological(transactions):
        if tx.pos_effect == PositionEffect.OPEN and tx.side == Side.BUY:
            position.open(tx)
        elif tx.pos_effect == PositionEffect.CLOSE and tx.side == Side.SELL:
            position.close(tx)
            if position.is_flat:
                trade = _close_cycle(
                    position,
                    option_multiplier=option_multiplier,
                    equity_multiplier=equity_multiplier,
                )
                if trade is None:
                    logger.debug("Close of %s at %s drained no open lots", tx.symbol, tx.exec_time)
                else:
                    trades.append(trade)
                position.reset()
    return trades


def match_group(
    group: TradeGroup,
    *,
    option_multiplier: int = DEFAULT_OPTION_MULTIPLIER,
    equity_multiplier: int = DEFAULT_EQUITY_MULTIPLIER,
) -> List[ClosedTrade]:
    return match_transactions(
        group.transactions,
        option_multiplier=option_multiplier,
        equity_multiplier=equity_multiplier,
    )


def match_groups(
    groups: Iterable[TradeGroup],
    *,
    option_multiplier: int = DEFAULT_OPTION_MULTIPLIER,
    equity_multiplier: int = DEFAULT_EQUITY_MULTIPLIER,
) -> List[ClosedTrade]:
    """Match every group independently and order the results by open time."""

    trades: List[ClosedTrade] = []
    for group in groups:
        trades.extend(
            match_group(
                group,
                option_multiplier=option_multiplier,
                equity_multiplier=equity_multiplier,
            )
        )
    trades.sort(key=lambda trade: trade.first_buy_exec_time)
    return trades


def open_positions(groups: Iterable[TradeGroup]) -> dict[GroupKey, int]:
    """Return the residual open quantity of every group that is not flat."""

    residual: dict[GroupKey, int] = {}
    for group in groups:
        position = _Position()
        for tx in _chronological(group.transactions):
            if tx.pos_effect == PositionEffect.OPEN and tx.side == Side.BUY:
                position.open(tx)
            elif tx.pos_effect == PositionEffect.CLOSE and tx.side == Side.SELL:
                position.close(tx)
                if position.is_flat:
                    position.buy_lots.clear()
                    position.sell_lots.clear()
                    position.reset()
        if position.current_open_quantity:
            residual[group.key] = position.current_open_quantity
    return residual


__all__ = ["match_transactions", "match_group", "match_groups", "open_positions"]
