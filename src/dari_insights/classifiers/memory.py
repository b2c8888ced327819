from dari_insights.classifiers.base import Classifier
from dari_insights.domain.categories import CategoryTree
from dari_insights.merchants.mapping import MerchantMappingService
from dari_insights.merchants.normalizer import normalize_merchant
from dari_insights.models import CategorizationResult, Category, MerchantMapping, Transaction


class MerchantMemoryClassifier(Classifier):
    """Categorizes from learned merchant mappings (exact key first, then similar names)."""

    def __init__(self, mappings: MerchantMappingService) -> None:
        self.mappings = mappings

    def classify(
        self, transaction: Transaction, categories: CategoryTree
    ) -> CategorizationResult | None:
        name = transaction.merchant_or_description
        mapping = self.mappings.find_best_mapping(name)
        if mapping is None:
            return None

        category = categories.get(mapping.category_id)
        if category is None:
            return None

        exact = mapping.normalized_name == normalize_merchant(name)
        return CategorizationResult(
            category=category,
            confidence=mapping.confidence,
            source="merchant_exact" if exact else "merchant_similar",
        )

    def learn(
        self, transaction: Transaction, category: Category, feedback: str | None = None
    ) -> MerchantMapping:
        return self.mappings.learn_from_correction(transaction.merchant_or_description, category.id, feedback)
