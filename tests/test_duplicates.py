from datetime import datetime, timedelta

import pytest

from dari_insights.analysis.duplicates import DuplicateResolver, detail_score, merge_descriptions
from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.money import Money
from dari_insights.errors import CurrencyMismatchError, NotFoundError, ValidationError
from dari_insights.models import MergeStrategy, Transaction, TransactionType
from dari_insights.repositories import InMemoryTransactionStore

BASE = datetime(2024, 5, 22, 10, 0)


def _txn(txn_id, minutes=0, amount="89.99", merchant="Store ABC", currency="SAR", **extra):
    values = dict(
        id=txn_id,
        account_id="acc-1",
        amount=Money.of(amount, currency),
        description="Store ABC purchase",
        merchant_name=merchant,
        category_id="shopping",
        date=BASE + timedelta(minutes=minutes),
    )
    values.update(extra)
    return Transaction(**values)


@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def resolver(store):
    return DuplicateResolver(store, EngineConfig(duplicate_window_minutes=10), clock=lambda: BASE)


def test_find_duplicate_groups(resolver):
    transactions = [
        _txn("a", 0),
        _txn("b", 1),
        _txn("c", 8),
        _txn("d", 25),
        _txn("e", 2, amount="10.00"),
        _txn("f", 3, account_id="acc-2"),
    ]

    groups = resolver.find_duplicate_groups(transactions)

    assert len(groups) == 1
    assert groups[0].transaction_ids == ["a", "b", "c"]
    assert 0.5 < groups[0].confidence <= 1.0


def test_group_window_is_measured_from_first_member(resolver):
    groups = resolver.find_duplicate_groups([_txn("a", 0), _txn("b", 9), _txn("c", 18), _txn("d", 27)])
    assert [group.transaction_ids for group in groups] == [["a", "b"], ["c", "d"]]


def test_grouping_ignores_input_order(resolver):
    items = [_txn("a", 0), _txn("b", 1)]
    forward = resolver.find_duplicate_groups(items)
    backward = resolver.find_duplicate_groups(list(reversed(items)))
    assert forward == backward


def test_pair_score_rewards_closeness(resolver):
    same_time = resolver.pair_score(_txn("a", 0), _txn("b", 0))
    later = resolver.pair_score(_txn("a", 0), _txn("b", 9))
    assert same_time == pytest.approx(1.0)
    assert later < same_time


def test_merge_keeps_most_detailed(store, resolver):
    store.add_many([
        _txn("a", 0, merchant=None, description="POS 4471", tags=frozenset({"card"})),
        _txn("b", 1, location="Riyadh Park", description="Store ABC purchase", tags=frozenset({"mall"})),
    ])

    result = resolver.merge(["a", "b"])

    merged = result.merged_transaction
    assert merged.merchant_name == "Store ABC"
    assert merged.location == "Riyadh Park"
    assert merged.description == "Store ABC purchase"
    assert merged.tags == frozenset({"card", "mall"})
    assert merged.merged_transaction_ids == ("a", "b")
    assert result.originals_deleted is True
    assert store.get_by_ids(["a", "b"]) == []
    assert store.get_by_ids([merged.id]) == [merged]


def test_merge_earliest_and_keep_originals(store, resolver):
    store.add_many([_txn("a", 0, location="Mall"), _txn("b", 5)])

    result = resolver.merge(["b", "a"], MergeStrategy.KEEP_EARLIEST, keep_originals=True)

    assert result.merged_transaction.date == BASE
    assert result.originals_deleted is False
    assert [t.id for t in result.original_transactions] == ["a", "b"]
    assert len(store.get_all_transactions()) == 3


def test_merge_latest(store, resolver):
    store.add_many([_txn("a", 0), _txn("b", 5)])
    assert resolver.merge(["a", "b"], MergeStrategy.KEEP_LATEST).merged_transaction.date == BASE + timedelta(minutes=5)


def test_merge_joins_descriptions_in_different_scripts(store, resolver):
    store.add_many([
        _txn("a", 0, description="Panda purchase"),
        _txn("b", 1, description="شراء من بنده"),
    ])
    merged = resolver.merge(["a", "b"]).merged_transaction
    assert merged.description == "Panda purchase / شراء من بنده"


@pytest.mark.parametrize(
    ("ids", "error"),
    [
        ([], ValidationError),
        (["a"], ValidationError),
        (["a", "a"], ValidationError),
        (["a", "missing"], NotFoundError),
        (["a", "usd"], CurrencyMismatchError),
        (["a", "other_account"], ValidationError),
        (["a", "credit"], ValidationError),
    ],
)
def test_merge_validation_leaves_store_untouched(store, resolver, ids, error):
    store.add_many([
        _txn("a", 0),
        _txn("usd", 1, currency="USD"),
        _txn("other_account", 1, account_id="acc-2"),
        _txn("credit", 1, type=TransactionType.CREDIT),
    ])

    with pytest.raises(error):
        resolver.merge(ids)
    assert len(store.get_all_transactions()) == 4


def test_missing_ids_are_reported(store, resolver):
    store.add_many([_txn("a", 0)])
    with pytest.raises(NotFoundError) as excinfo:
        resolver.merge(["a", "x", "y"])
    assert excinfo.value.identifiers == ["x", "y"]


def test_detail_score_and_descriptions():
    assert detail_score(_txn("a", merchant=None, description="short")) == 0
    assert detail_score(_txn("b", location="Mall", tags=frozenset({"x"}))) == 6
    assert merge_descriptions([_txn("a", description=""), _txn("b", description="")]) == ""
    assert merge_descriptions([_txn("a", description="abc"), _txn("b", description="abcdef")]) == "abcdef"


def test_equal_amounts_with_different_scale_share_a_group(resolver):
    groups = resolver.find_duplicate_groups([_txn("a", 0, amount="89.99"), _txn("b", 1, amount="89.990")])
    assert [group.transaction_ids for group in groups] == [["a", "b"]]
