import re
from collections.abc import Callable, Iterable
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from dari_insights.classifiers.base import Classifier
from dari_insights.domain.categories import CategoryTree
from dari_insights.logger import get_logger
from dari_insights.models import (
    CategorizationResult,
    CategorizationRule,
    ConditionField,
    ConditionOperator,
    RuleCondition,
    Transaction,
)

logger = get_logger(__name__)

TextEvaluator = Callable[[str, str], bool]

_TEXT_OPERATORS: dict[ConditionOperator, TextEvaluator] = {
    ConditionOperator.CONTAINS: lambda actual, expected: expected in actual,
    ConditionOperator.NOT_CONTAINS: lambda actual, expected: expected not in actual,
    ConditionOperator.EQUALS: lambda actual, expected: actual == expected,
    ConditionOperator.NOT_EQUALS: lambda actual, expected: actual != expected,
    ConditionOperator.STARTS_WITH: lambda actual, expected: actual.startswith(expected),
    ConditionOperator.ENDS_WITH: lambda actual, expected: actual.endswith(expected),
    ConditionOperator.GREATER_THAN: lambda actual, expected: actual > expected,
    ConditionOperator.LESS_THAN: lambda actual, expected: actual < expected,
}

_NUMERIC_OPERATORS: dict[ConditionOperator, Callable[[Decimal, Decimal], bool]] = {
    ConditionOperator.GREATER_THAN: lambda actual, expected: actual > expected,
    ConditionOperator.LESS_THAN: lambda actual, expected: actual < expected,
    ConditionOperator.EQUALS: lambda actual, expected: actual == expected,
    ConditionOperator.NOT_EQUALS: lambda actual, expected: actual != expected,
}

_ORDERING_OPERATORS = (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN)


def field_value(transaction: Transaction, field: ConditionField) -> str:
    if field == ConditionField.DESCRIPTION:
        return transaction.description
    if field == ConditionField.MERCHANT_NAME:
        return transaction.merchant_name or ""
    if field == ConditionField.AMOUNT:
        return str(transaction.amount.amount)
    return transaction.account_id


def _parse_number(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        return None
    if not value.is_finite():
        return None
    return value


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: int) -> re.Pattern[str]:
    return re.compile(pattern, flags)


def _matches_regex(actual: str, condition: RuleCondition) -> bool:
    flags = 0 if condition.case_sensitive else re.IGNORECASE
    try:
        compiled = _compile(condition.value, flags)
    except re.error as exc:
        logger.warning("[RULES] Invalid regex '%s' treated as no match: %s", condition.value, exc)
        return False
    return compiled.search(actual) is not None


def evaluate_condition(condition: RuleCondition, transaction: Transaction) -> bool:
    raw = field_value(transaction, condition.field)

    if condition.operator == ConditionOperator.REGEX:
        return _matches_regex(raw, condition)

    if condition.field == ConditionField.AMOUNT and condition.operator in _NUMERIC_OPERATORS:
        expected_number = _parse_number(condition.value)
        if expected_number is not None:
            return _NUMERIC_OPERATORS[condition.operator](transaction.amount.amount, expected_number)
        if condition.operator in _ORDERING_OPERATORS:
            logger.debug("[RULES] Non-numeric amount bound '%s'; condition is false.", condition.value)
            return False

    actual, expected = raw, condition.value
    if not condition.case_sensitive:
        actual, expected = actual.casefold(), expected.casefold()
    return _TEXT_OPERATORS[condition.operator](actual, expected)


def rule_matches(rule: CategorizationRule, transaction: Transaction) -> bool:
    """A rule fires only when it is active, has conditions, and every condition holds."""
    if not rule.active or not rule.conditions:
        return False
    return all(evaluate_condition(condition, transaction) for condition in rule.conditions)


def find_matching_rule(
    rules: Iterable[CategorizationRule], transaction: Transaction
) -> CategorizationRule | None:
    matching = [rule for rule in rules if rule_matches(rule, transaction)]
    if not matching:
        return None
    return max(matching, key=lambda rule: (rule.priority, rule.confidence))


class RuleClassifier(Classifier):
    def __init__(self, rules: Iterable[CategorizationRule] = ()) -> None:
        self.rules: list[CategorizationRule] = list(rules)

    def set_rules(self, rules: Iterable[CategorizationRule]) -> None:
        self.rules = list(rules)

    def _candidate_rules(self, categories: CategoryTree) -> list[CategorizationRule]:
        candidates: dict[str, CategorizationRule] = {}
        for category in categories:
            for rule in category.rules:
                candidates[rule.id] = rule
        for rule in self.rules:
            candidates.setdefault(rule.id, rule)
        return [rule for rule in candidates.values() if rule.category_id in categories]

    def classify(
        self, transaction: Transaction, categories: CategoryTree
    ) -> CategorizationResult | None:
        rule = find_matching_rule(self._candidate_rules(categories), transaction)
        if rule is None:
            return None
        category = categories.get(rule.category_id)
        if category is None:
            return None
        return CategorizationResult(
            category=category,
            confidence=rule.confidence / 100.0,
            source="rule",
            rule_id=rule.id,
        )
