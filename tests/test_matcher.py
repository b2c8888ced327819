from datetime import datetime

import pytest

from dari_insights.classifiers.keywords import CategoryMatcher, KeywordClassifier
from dari_insights.domain.categories import CategoryTree, default_category_tree
from dari_insights.domain.money import Money
from dari_insights.errors import CurrencyMismatchError
from dari_insights.models import (
    Category,
    CategoryLevel,
    CategoryType,
    MatchReasonType,
    Transaction,
    TransactionType,
)


def _txn(description, amount="50.00", merchant=None, txn_type=TransactionType.DEBIT, currency="SAR"):
    return Transaction(
        id="t1",
        account_id="acc-1",
        amount=Money.of(amount, currency),
        type=txn_type,
        description=description,
        merchant_name=merchant,
        date=datetime(2024, 3, 1, 13, 0),
    )


def test_restaurant_lunch_scores_keyword_plus_type():
    category = Category(id="food", name="Food", type=CategoryType.EXPENSE, keywords=("restaurant",))
    match = CategoryMatcher().match(_txn("restaurant lunch"), category)

    assert match.confidence == 20
    assert {reason.type for reason in match.match_reasons} == {
        MatchReasonType.KEYWORD,
        MatchReasonType.CATEGORY_TYPE,
    }


def test_keyword_and_pattern_points_are_capped():
    category = Category(
        id="food",
        name="Food",
        keywords=("a", "b", "c", "d", "e"),
        merchant_patterns=("x", "y", "z"),
    )
    match = CategoryMatcher().match(_txn("a b c d e", merchant="x y z"), category)
    # 40 keywords + 30 patterns + 10 type
    assert match.confidence == 80


def test_amount_within_and_near_monthly_limit():
    category = Category(id="food", name="Food", keywords=("lunch",), monthly_limit=Money.of("100"))
    matcher = CategoryMatcher()
    assert matcher.match(_txn("lunch", amount="80"), category).confidence == 40
    assert matcher.match(_txn("lunch", amount="150"), category).confidence == 30
    assert matcher.match(_txn("lunch", amount="250"), category).confidence == 20


def test_limit_in_other_currency_raises():
    category = Category(id="food", name="Food", monthly_limit=Money.of("100", "USD"))
    with pytest.raises(CurrencyMismatchError):
        CategoryMatcher().match(_txn("lunch"), category)


def test_match_all_skips_category_with_foreign_limit():
    food = Category(id="food", name="Food", type=CategoryType.EXPENSE, keywords=("restaurant",))
    travel = Category(id="travel", name="Travel", monthly_limit=Money.of("500", "USD"))

    matches = CategoryMatcher().match_all(_txn("restaurant lunch"), [food, travel])

    assert [match.category.id for match in matches] == ["food"]


def test_income_and_transfer_type_consistency():
    matcher = CategoryMatcher()
    salary = Category(id="salary", name="Salary", type=CategoryType.INCOME)
    transfer = Category(id="transfer", name="Transfer", type=CategoryType.TRANSFER)

    credit = _txn("monthly pay", amount="5000", txn_type=TransactionType.CREDIT)
    assert matcher.match(credit, salary).confidence == 10
    assert matcher.match(_txn("coffee"), salary).confidence == 0
    assert matcher.match(_txn("Transfer to savings"), transfer).confidence == 10


def test_best_match_prefers_deeper_category_on_tie():
    parent = Category(id="food", name="Food", keywords=("panda",))
    child = Category(id="groceries", name="Groceries", keywords=("panda",), parent_id="food", level=CategoryLevel.SUB)
    tree = CategoryTree([parent, child])

    match = CategoryMatcher().best_match(_txn("PANDA 123"), tree)
    assert match is not None
    assert match.category.id == "groceries"


def test_keyword_classifier_needs_a_text_signal():
    tree = CategoryTree([Category(id="food", name="Food", keywords=("restaurant",))])
    classifier = KeywordClassifier(min_confidence=20)

    assert classifier.classify(_txn("bank fee"), tree) is None

    result = classifier.classify(_txn("restaurant lunch"), tree)
    assert result is not None
    assert result.category.id == "food"
    assert result.confidence == 0.2
    assert result.source == "keywords"


def test_default_tree_paths():
    tree = default_category_tree()
    groceries = tree.get("food_groceries")

    assert groceries is not None
    assert tree.full_path(groceries) == "Food & Dining > Groceries"
    assert tree.depth(groceries) == 1
    assert [child.id for child in tree.children("food_dining")] == ["food_groceries", "food_delivery"]
    assert all(category.parent_id is None for category in tree.roots())


def test_category_cycle_is_truncated():
    tree = CategoryTree([
        Category(id="a", name="A", parent_id="b"),
        Category(id="b", name="B", parent_id="a"),
    ])
    assert [category.id for category in tree.ancestors(tree.get("a"))] == ["b"]
