"""Deduplicating merge of normalized transactions into trade groups."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from trade_journal.merge import (
    count_transactions,
    filter_by_exec_range,
    merge_transactions,
    remove_origin,
)
from trade_journal.models import GroupKey, TradeGroup

NY = ZoneInfo("America/New_York")


def at(day: int, hour: int = 10, minute: int = 0) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=NY)


def test_merge_is_idempotent(make_tx):
    batch = [
        make_tx("BUY", 10, "2.00", at(1), source_id="a"),
        make_tx("SELL", 10, "3.00", at(1, 11), source_id="b"),
        make_tx("BUY", 100, "50", at(2), source_id="c", symbol="SPY", strike="0", expiration=None),
    ]

    once = merge_transactions([], batch, origin="march.csv")
    twice = merge_transactions(once.groups, batch, origin="march.csv")

    assert twice.groups == once.groups
    assert once.added == 3
    assert twice.added == 0
    assert twice.duplicates == 3


def test_same_source_id_from_different_sources_is_kept_once(make_tx):
    from_export = make_tx("BUY", 10, "2.00", at(1), source_id="shared")
    from_broker = make_tx("BUY", 10, "2.05", at(1, 10, 1), source_id="shared")

    first = merge_transactions([], [from_export], origin="march.csv")
    result = merge_transactions(first.groups, [from_broker], origin="broker:1234")

    [group] = result.groups
    assert group.transactions == (from_export,)
    assert group.origins["shared"] == frozenset({"march.csv", "broker:1234"})


def test_duplicates_within_one_batch_collapse(make_tx):
    leg = make_tx("BUY", 10, "2.00", at(1), source_id="a")

    result = merge_transactions([], [leg, leg])

    assert count_transactions(result.groups) == 1
    assert result.added == 1
    assert result.duplicates == 1


def test_blocked_groups_are_purged_and_others_untouched(make_tx):
    keep = TradeGroup(
        key=GroupKey("AAPL", Decimal("150"), date(2024, 3, 15)),
        transactions=(make_tx("BUY", 1, "1.00", at(1), source_id="keep"),),
    )
    junk = TradeGroup(
        key=GroupKey("CURRENCY_USD", Decimal("0"), None),
        transactions=(make_tx("SELL", 1, "0.65", at(1), source_id="fee", symbol="CURRENCY_USD", strike="0", expiration=None),),
    )

    result = merge_transactions([keep, junk], [])

    assert result.groups == [keep]
    assert result.removed_groups == 1


def test_incoming_blocked_symbol_is_ignored(make_tx):
    fee = make_tx("SELL", 1, "0.65", at(1), symbol="CURRENCY_USD", strike="0", expiration=None)

    result = merge_transactions([], [fee])

    assert result.groups == []
    assert result.added == 0


def test_merge_does_not_mutate_inputs(make_tx):
    existing = [
        TradeGroup(
            key=GroupKey("AAPL", Decimal("150"), date(2024, 3, 15)),
            transactions=(make_tx("BUY", 1, "1.00", at(1), source_id="a"),),
            origins={"a": frozenset({"one.csv"})},
        )
    ]
    snapshot = list(existing)

    merge_transactions(existing, [make_tx("SELL", 1, "2.00", at(2), source_id="b")], origin="two.csv")

    assert existing == snapshot
    assert existing[0].origins == {"a": frozenset({"one.csv"})}


def test_stored_duplicate_keys_fold_together(make_tx):
    key = GroupKey("AAPL", Decimal("150"), date(2024, 3, 15))
    first = TradeGroup(key=key, transactions=(make_tx("BUY", 1, "1.00", at(1), source_id="a"),))
    second = TradeGroup(
        key=key,
        transactions=(
            make_tx("BUY", 1, "1.00", at(1), source_id="a"),
            make_tx("SELL", 1, "2.00", at(2), source_id="b"),
        ),
    )

    [group] = merge_transactions([first, second], []).groups

    assert [tx.source_id for tx in group.transactions] == ["a", "b"]


def test_remove_origin_keeps_transactions_shared_with_other_uploads(make_tx):
    shared = make_tx("BUY", 10, "2.00", at(1), source_id="shared")
    only_march = make_tx("SELL", 5, "3.00", at(2), source_id="march-only")
    only_april = make_tx("SELL", 5, "3.10", at(3), source_id="april-only")
    groups = merge_transactions([], [shared, only_march], origin="march.csv").groups
    groups = merge_transactions(groups, [shared, only_april], origin="april.csv").groups

    remaining = remove_origin(groups, "march.csv")

    [group] = remaining
    assert [tx.source_id for tx in group.transactions] == ["shared", "april-only"]
    assert group.origins["shared"] == frozenset({"april.csv"})


def test_remove_origin_drops_emptied_groups_and_keeps_untagged_legs(make_tx):
    untagged = TradeGroup(
        key=GroupKey("MSFT", Decimal("0"), None),
        transactions=(make_tx("BUY", 5, "400", at(1), source_id="legacy", symbol="MSFT", strike="0", expiration=None),),
    )
    groups = merge_transactions([untagged], [make_tx("BUY", 1, "1.00", at(1), source_id="x")], origin="x.csv").groups

    remaining = remove_origin(groups, "x.csv")

    assert remaining == [untagged]


def test_filter_by_exec_range(make_tx):
    groups = merge_transactions(
        [],
        [
            make_tx("BUY", 1, "1.00", at(1), source_id="a"),
            make_tx("SELL", 1, "2.00", at(5), source_id="b"),
            make_tx("BUY", 1, "1.00", at(9), source_id="c"),
        ],
        origin="f.csv",
    ).groups

    [group] = filter_by_exec_range(groups, date(2024, 3, 1), date(2024, 3, 5))

    assert [tx.source_id for tx in group.transactions] == ["a", "b"]
    assert set(group.origins) == {"a", "b"}
    assert filter_by_exec_range(groups, date(2024, 4, 1), None) == []
    assert filter_by_exec_range(groups) == groups
