from collections.abc import Iterable

from dari_insights.classifiers.base import Classifier
from dari_insights.classifiers.keywords import CategoryMatcher, KeywordClassifier
from dari_insights.classifiers.memory import MerchantMemoryClassifier
from dari_insights.classifiers.rules import RuleClassifier
from dari_insights.domain.categories import CategoryTree, default_category_tree
from dari_insights.errors import NotFoundError
from dari_insights.logger import get_logger
from dari_insights.merchants.mapping import MerchantMappingService
from dari_insights.models import (
    CategorizationResult,
    CategorizationRule,
    CategoryMatch,
    MerchantMapping,
    Transaction,
)

logger = get_logger(__name__)


class CategorizerService:
    def __init__(
        self,
        mappings: MerchantMappingService | None = None,
        categories: CategoryTree | None = None,
        rules: Iterable[CategorizationRule] = (),
        min_match_confidence: int = 20,
    ) -> None:
        self.mappings = mappings or MerchantMappingService()
        self.categories = categories if categories is not None else default_category_tree()
        self.matcher = CategoryMatcher()

        self.classifiers: list[Classifier] = []

        # 1. Learned merchant mappings (highest priority)
        self.memory = MerchantMemoryClassifier(self.mappings)
        self.classifiers.append(self.memory)

        # 2. Explicit rules
        self.rules = RuleClassifier(rules)
        self.classifiers.append(self.rules)

        # 3. Keyword and merchant pattern scoring (fallback)
        self.keywords = KeywordClassifier(self.matcher, min_confidence=min_match_confidence)
        self.classifiers.append(self.keywords)

    def update_categories(
        self,
        categories: CategoryTree,
        rules: Iterable[CategorizationRule] | None = None,
    ) -> None:
        self.categories = categories
        if rules is not None:
            self.rules.set_rules(rules)

    def categorize(
        self, transaction: Transaction, categories: CategoryTree | None = None
    ) -> CategorizationResult | None:
        tree = categories if categories is not None else self.categories
        for classifier in self.classifiers:
            classifier_name = classifier.__class__.__name__
            logger.debug("Trying %s for: '%s'", classifier_name, transaction.description[:50])

            result = classifier.classify(transaction, tree)

            if result:
                logger.debug(
                    "%s returned: '%s' (confidence: %.2f)",
                    classifier_name,
                    result.category.name,
                    result.confidence,
                )
                return result
            logger.debug("%s returned: None", classifier_name)

        logger.debug("No classifier matched for: '%s'", transaction.description[:50])
        return None

    def categorize_many(self, transactions: Iterable[Transaction]) -> dict[str, CategorizationResult | None]:
        return {transaction.id: self.categorize(transaction) for transaction in transactions}

    def category_matches(self, transaction: Transaction, limit: int = 5) -> list[CategoryMatch]:
        return self.matcher.match_all(transaction, self.categories)[:limit]

    def learn(
        self,
        transaction: Transaction,
        category_id: str,
        feedback: str | None = None,
    ) -> MerchantMapping:
        """
        Feed a user's category choice back into the merchant mappings.
        """
        category = self.categories.get(category_id)
        if category is None:
            raise NotFoundError("Category", category_id)
        return self.memory.learn(transaction, category, feedback)
