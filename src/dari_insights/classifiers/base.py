from abc import ABC, abstractmethod

from dari_insights.domain.categories import CategoryTree
from dari_insights.models import CategorizationResult, Category, Transaction


class Classifier(ABC):
    @abstractmethod
    def classify(
        self, transaction: Transaction, categories: CategoryTree
    ) -> CategorizationResult | None:
        """Attempt to categorize the transaction against the given categories."""
        pass

    def learn(self, transaction: Transaction, category: Category, feedback: str | None = None) -> object:
        """Learn from a confirmed transaction-category pair. Static classifiers ignore it."""
        return None
