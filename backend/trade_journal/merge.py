"""Merge newly normalized transactions into a user's persisted trade groups."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Collection, Dict, Iterable, List, Optional, Sequence

from .models import GroupKey, TradeGroup, Transaction

logger = logging.getLogger(__name__)

# Grouping keys produced by earlier, buggy imports that must not survive a merge.
DEFAULT_BLOCKED_SYMBOLS: tuple[str, ...] = ("CURRENCY_USD",)


@dataclass
class MergeResult:
    groups: List[TradeGroup] = field(default_factory=list)
    added: int = 0
    duplicates: int = 0
    removed_groups: int = 0


@dataclass
class _GroupBuilder:
    key: GroupKey
    transactions: List[Transaction]
    origins: Dict[str, set[str]]
    known: set[str]

    @classmethod
    def from_group(cls, group: TradeGroup) -> "_GroupBuilder":
        return cls(
            key=group.key,
            transactions=list(group.transactions),
            origins={source_id: set(tags) for source_id, tags in group.origins.items()},
            known=group.source_ids(),
        )

    def build(self) -> TradeGroup:
        return TradeGroup(
            key=self.key,
            transactions=tuple(self.transactions),
            origins={source_id: frozenset(tags) for source_id, tags in self.origins.items() if tags},
        )


def merge_transactions(
    existing: Sequence[TradeGroup],
    incoming: Iterable[Transaction],
    *,
    origin: Optional[str] = None,
    blocked_symbols: Collection[str] = DEFAULT_BLOCKED_SYMBOLS,
) -> MergeResult:
    """Union ``incoming`` into ``existing`` keyed by group and ``source_id``.

    Existing transactions are never replaced: the first leg seen for a
    ``source_id`` wins and later copies only contribute their ``origin`` tag.
    Groups whose symbol is on the block-list are dropped from both sides.
    The inputs are not mutated and merging the same batch twice yields the
    same groups as merging it once.
    """

    blocked = {symbol.upper() for symbol in blocked_symbols}
    result = MergeResult()
    builders: Dict[GroupKey, _GroupBuilder] = {}
    for group in existing:
        if group.key.symbol.upper() in blocked:
            result.removed_groups += 1
            logger.info("Dropping blocked trade group %s", group.key.label())
            continue
        if group.key in builders:
            # Two stored rows for one key: fold the second into the first.
            builder = builders[group.key]
            for tx in group.transactions:
                _append(builder, tx, None, result, count=False)
            for source_id, tags in group.origins.items():
                builder.origins.setdefault(source_id, set()).update(tags)
            continue
        builders[group.key] = _GroupBuilder.from_group(group)

    for tx in incoming:
        if tx.symbol.upper() in blocked:
            continue
        builder = builders.get(tx.group_key)
        if builder is None:
            builder = _GroupBuilder(key=tx.group_key, transactions=[], origins={}, known=set())
            builders[tx.group_key] = builder
        _append(builder, tx, origin, result)

    result.groups = [builder.build() for builder in builders.values()]
    return result


def _append(
    builder: _GroupBuilder,
    tx: Transaction,
    origin: Optional[str],
    result: MergeResult,
    *,
    count: bool = True,
) -> None:
    if tx.source_id in builder.known:
        if count:
            result.duplicates += 1
    else:
        builder.transactions.append(tx)
        builder.known.add(tx.source_id)
        if count:
            result.added += 1
    if origin:
        builder.origins.setdefault(tx.source_id, set()).add(origin)


def remove_origin(groups: Sequence[TradeGroup], origin: str) -> List[TradeGroup]:
    """Forget everything a single upload contributed.

    A transaction is removed only when ``origin`` was its last remaining
    source. Transactions without any recorded origin predate provenance
    tracking and are kept.
    """

    updated: List[TradeGroup] = []
    for group in groups:
        origins: Dict[str, frozenset[str]] = {}
        kept: List[Transaction] = []
        for tx in group.transactions:
            tags = group.origins.get(tx.source_id)
            if tags is None:
                kept.append(tx)
                continue
            remaining = tags - {origin}
            if remaining:
                kept.append(tx)
                origins[tx.source_id] = remaining
        if kept:
            updated.append(TradeGroup(key=group.key, transactions=tuple(kept), origins=origins))
    return updated


def count_transactions(groups: Iterable[TradeGroup]) -> int:
    return sum(len(group.transactions) for group in groups)


def filter_by_exec_range(
    groups: Iterable[TradeGroup],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[TradeGroup]:
    """Keep transactions whose execution day falls within ``[start, end]``."""

    if start is None and end is None:
        return list(groups)
    filtered: List[TradeGroup] = []
    for group in groups:
        kept = tuple(
            tx
            for tx in group.transactions
            if (start is None or tx.exec_time.date() >= start) and (end is None or tx.exec_time.date() <= end)
        )
        if kept:
            origins = {tx.source_id: group.origins[tx.source_id] for tx in kept if tx.source_id in group.origins}
            filtered.append(TradeGroup(key=group.key, transactions=kept, origins=origins))
    return filtered


__all__ = [
    "DEFAULT_BLOCKED_SYMBOLS",
    "MergeResult",
    "merge_transactions",
    "remove_origin",
    "count_transactions",
    "filter_by_exec_range",
]
