from collections.abc import Iterable

from dari_insights.classifiers.base import Classifier
from dari_insights.domain.categories import CategoryTree
from dari_insights.errors import CurrencyMismatchError
from dari_insights.logger import get_logger
from dari_insights.models import (
    CategorizationResult,
    Category,
    CategoryMatch,
    CategoryType,
    MatchReason,
    MatchReasonType,
    Transaction,
)

logger = get_logger(__name__)

KEYWORD_POINTS = 10
KEYWORD_CAP = 40
PATTERN_POINTS = 15
PATTERN_CAP = 30
WITHIN_LIMIT_POINTS = 20
NEAR_LIMIT_POINTS = 10
TYPE_POINTS = 10
MAX_CONFIDENCE = 100

TRANSFER_MARKERS = ("transfer", "تحويل")


def _contains_any(needle: str, haystacks: Iterable[str]) -> bool:
    folded = needle.casefold().strip()
    if not folded:
        return False
    return any(folded in haystack for haystack in haystacks)


def _has_text_signal(match: CategoryMatch) -> bool:
    return any(
        reason.type in (MatchReasonType.KEYWORD, MatchReasonType.MERCHANT_PATTERN)
        for reason in match.match_reasons
    )


class CategoryMatcher:
    """
    Additive 0-100 confidence of a transaction belonging to a category.

    Signals: keyword hits (+10 each, max 40), merchant pattern hits (+15 each,
    max 30), amount within the monthly limit (+20, or +10 within twice the
    limit) and category type consistency (+10).
    """

    def match(self, transaction: Transaction, category: Category) -> CategoryMatch:
        texts = [transaction.description.casefold()]
        if transaction.merchant_name:
            texts.append(transaction.merchant_name.casefold())

        reasons: list[MatchReason] = []

        keyword_hits = [keyword for keyword in category.keywords if _contains_any(keyword, texts)]
        keyword_points = min(KEYWORD_CAP, KEYWORD_POINTS * len(keyword_hits))
        if keyword_hits:
            reasons.append(MatchReason(
                type=MatchReasonType.KEYWORD, value=", ".join(keyword_hits), points=keyword_points
            ))

        pattern_hits = [pattern for pattern in category.merchant_patterns if _contains_any(pattern, texts)]
        pattern_points = min(PATTERN_CAP, PATTERN_POINTS * len(pattern_hits))
        if pattern_hits:
            reasons.append(MatchReason(
                type=MatchReasonType.MERCHANT_PATTERN, value=", ".join(pattern_hits), points=pattern_points
            ))

        amount_points = self._amount_points(transaction, category)
        if amount_points:
            reasons.append(MatchReason(
                type=MatchReasonType.AMOUNT_RANGE,
                value=category.monthly_limit.format() if category.monthly_limit else "",
                points=amount_points,
            ))

        type_points = TYPE_POINTS if self._type_consistent(transaction, category, texts[0]) else 0
        if type_points:
            reasons.append(MatchReason(
                type=MatchReasonType.CATEGORY_TYPE, value=category.type.value, points=type_points
            ))

        total = keyword_points + pattern_points + amount_points + type_points
        return CategoryMatch(
            category=category,
            confidence=min(MAX_CONFIDENCE, total),
            match_reasons=tuple(reasons),
        )

    @staticmethod
    def _amount_points(transaction: Transaction, category: Category) -> int:
        limit = category.monthly_limit
        if limit is None:
            return 0
        # Raises CurrencyMismatchError when the limit is in another currency
        amount = abs(transaction.amount)
        if amount <= limit:
            return WITHIN_LIMIT_POINTS
        if amount <= limit.times(2):
            return NEAR_LIMIT_POINTS
        return 0

    @staticmethod
    def _type_consistent(transaction: Transaction, category: Category, description: str) -> bool:
        if category.type == CategoryType.EXPENSE:
            return transaction.is_outgoing
        if category.type == CategoryType.INCOME:
            return not transaction.is_outgoing
        if category.type == CategoryType.TRANSFER:
            return any(marker in description for marker in TRANSFER_MARKERS)
        return False

    def match_all(self, transaction: Transaction, categories: Iterable[Category]) -> list[CategoryMatch]:
        matches: list[CategoryMatch] = []
        for category in categories:
            try:
                match = self.match(transaction, category)
            except CurrencyMismatchError as exc:
                logger.warning("[KEYWORDS] Skipping %s for %s: %s", category.id, transaction.id, exc)
                continue
            if match.confidence > 0:
                matches.append(match)
        matches.sort(key=lambda match: match.confidence, reverse=True)
        return matches

    def best_match(
        self,
        transaction: Transaction,
        categories: CategoryTree,
        min_confidence: int = 1,
        require_text_signal: bool = False,
    ) -> CategoryMatch | None:
        """Highest confidence wins; ties go to the higher rule priority, then the deeper category."""
        candidates = [
            match for match in self.match_all(transaction, categories)
            if match.confidence >= min_confidence
            and (not require_text_signal or _has_text_signal(match))
        ]
        if not candidates:
            return None

        def rank(match: CategoryMatch) -> tuple[int, int, int]:
            priorities = [rule.priority for rule in match.category.rules if rule.active]
            return (
                match.confidence,
                max(priorities, default=0),
                categories.specificity(match.category),
            )

        return max(candidates, key=rank)


class KeywordClassifier(Classifier):
    def __init__(self, matcher: CategoryMatcher | None = None, min_confidence: int = 20) -> None:
        self.matcher = matcher or CategoryMatcher()
        self.min_confidence = min_confidence

    def classify(
        self, transaction: Transaction, categories: CategoryTree
    ) -> CategorizationResult | None:
        match = self.matcher.best_match(
            transaction,
            categories,
            min_confidence=self.min_confidence,
            require_text_signal=True,
        )
        if match is None:
            return None
        logger.debug(
            "[KEYWORDS] '%s' scored %d for %s (%s)",
            transaction.description[:50],
            match.confidence,
            match.category.id,
            ", ".join(reason.type.value for reason in match.match_reasons),
        )
        return CategorizationResult(
            category=match.category,
            confidence=match.confidence / 100.0,
            source="keywords",
        )
