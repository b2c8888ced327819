from datetime import datetime

import pytest

from dari_insights.classifiers.rules import (
    RuleClassifier,
    evaluate_condition,
    find_matching_rule,
    rule_matches,
)
from dari_insights.domain.categories import CategoryTree
from dari_insights.domain.money import Money
from dari_insights.models import (
    CategorizationRule,
    Category,
    ConditionField,
    ConditionOperator,
    RuleCondition,
    Transaction,
)


def _txn(description="UBER TRIP 1234", amount="45.00", merchant="Uber"):
    return Transaction(
        id="t1",
        account_id="acc-1",
        amount=Money.of(amount),
        description=description,
        merchant_name=merchant,
        date=datetime(2024, 3, 1, 12, 0),
    )


def _cond(field, operator, value, case_sensitive=False):
    return RuleCondition(field=field, operator=operator, value=value, case_sensitive=case_sensitive)


@pytest.mark.parametrize(
    ("operator", "value", "expected"),
    [
        (ConditionOperator.CONTAINS, "trip", True),
        (ConditionOperator.NOT_CONTAINS, "trip", False),
        (ConditionOperator.STARTS_WITH, "uber", True),
        (ConditionOperator.ENDS_WITH, "1234", True),
        (ConditionOperator.EQUALS, "uber trip 1234", True),
        (ConditionOperator.NOT_EQUALS, "uber trip 1234", False),
        (ConditionOperator.REGEX, r"trip\s+\d+", True),
    ],
)
def test_text_operators_ignore_case_by_default(operator, value, expected):
    condition = _cond(ConditionField.DESCRIPTION, operator, value)
    assert evaluate_condition(condition, _txn()) is expected


def test_case_sensitive_condition():
    condition = _cond(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "trip", case_sensitive=True)
    assert evaluate_condition(condition, _txn()) is False


def test_amount_comparisons_are_numeric():
    txn = _txn(amount="45.00")
    assert evaluate_condition(_cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "9"), txn)
    assert evaluate_condition(_cond(ConditionField.AMOUNT, ConditionOperator.LESS_THAN, "100"), txn)
    assert evaluate_condition(_cond(ConditionField.AMOUNT, ConditionOperator.EQUALS, "45"), txn)
    assert not evaluate_condition(_cond(ConditionField.AMOUNT, ConditionOperator.NOT_EQUALS, "45.0"), txn)


def test_non_numeric_amount_bound_is_false():
    condition = _cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "lots")
    assert evaluate_condition(condition, _txn()) is False


def test_invalid_regex_is_a_non_match():
    condition = _cond(ConditionField.DESCRIPTION, ConditionOperator.REGEX, "([unclosed")
    assert evaluate_condition(condition, _txn()) is False


def test_rule_requires_every_condition():
    rule = CategorizationRule(
        id="r1",
        category_id="transport",
        conditions=(
            _cond(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "uber"),
            _cond(ConditionField.AMOUNT, ConditionOperator.GREATER_THAN, "100"),
        ),
    )
    # Only the first condition holds
    assert rule_matches(rule, _txn(amount="45.00")) is False
    assert rule_matches(rule, _txn(amount="150.00")) is True


def test_inactive_or_empty_rules_never_match():
    condition = _cond(ConditionField.DESCRIPTION, ConditionOperator.CONTAINS, "uber")
    assert not rule_matches(CategorizationRule(id="r1", category_id="x", conditions=(condition,), active=False), _txn())
    assert not rule_matches(CategorizationRule(id="r2", category_id="x"), _txn())


def test_highest_priority_rule_wins():
    condition = _cond(ConditionField.MERCHANT_NAME, ConditionOperator.EQUALS, "uber")
    low = CategorizationRule(id="low", category_id="a", conditions=(condition,), priority=1, confidence=99)
    high = CategorizationRule(id="high", category_id="b", conditions=(condition,), priority=5, confidence=60)
    assert find_matching_rule([low, high], _txn()).id == "high"


def test_rule_classifier_uses_category_and_external_rules():
    condition = _cond(ConditionField.MERCHANT_NAME, ConditionOperator.CONTAINS, "uber")
    embedded = CategorizationRule(id="embedded", category_id="transport", conditions=(condition,), priority=1)
    external = CategorizationRule(id="external", category_id="travel", conditions=(condition,), priority=9)
    orphan = CategorizationRule(id="orphan", category_id="missing", conditions=(condition,), priority=99)
    tree = CategoryTree([
        Category(id="transport", name="Transportation", rules=(embedded,)),
        Category(id="travel", name="Travel"),
    ])

    classifier = RuleClassifier([external, orphan])
    result = classifier.classify(_txn(), tree)

    assert result is not None
    assert result.category.id == "travel"
    assert result.rule_id == "external"
    assert result.source == "rule"
    assert result.confidence == 0.8
