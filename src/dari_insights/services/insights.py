from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TypeVar

from dari_insights.analysis.anomalies import AnomalyDetector
from dari_insights.analysis.duplicates import DuplicateResolver
from dari_insights.analysis.subscriptions import SubscriptionDetector
from dari_insights.analysis.tracking import SubscriptionTracker
from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.categories import CategoryTree
from dari_insights.domain.result import Failure, Result, Success
from dari_insights.errors import EngineError, ExternalFailure, NotFoundError, ValidationError
from dari_insights.logger import get_logger
from dari_insights.manager import CategorizerService
from dari_insights.models import (
    AnomalyReport,
    CategorizationResult,
    DuplicateGroup,
    MerchantMapping,
    MergeResult,
    MergeStrategy,
    Subscription,
    SubscriptionAlert,
    Transaction,
)
from dari_insights.repositories import CategorySource, TransactionStore

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RANGE_DAYS = 30


def resolve_date_range(
    start_date: str | None,
    end_date: str | None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Parse YYYY-MM-DD bounds. A missing start means 30 days back, a missing end means now."""
    reference = now or datetime.now()
    try:
        start = datetime.strptime(start_date, "%Y-%m-%d") if start_date else reference - timedelta(days=DEFAULT_RANGE_DAYS)
        end = (
            datetime.strptime(end_date, "%Y-%m-%d") + timedelta(days=1) - timedelta(microseconds=1)
            if end_date
            else reference
        )
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {exc}") from exc
    if start > end:
        raise ValidationError("start_date must not be after end_date")
    return start, end


class InsightsService:
    """
    Runs the engines over data pulled from the transaction and category
    sources. Every public method returns Success or Failure; a failing source
    fails the whole operation rather than producing partial results.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        categories: CategorySource,
        categorizer: CategorizerService,
        tracker: SubscriptionTracker | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.transactions = transactions
        self.categories = categories
        self.categorizer = categorizer
        self.config = config or EngineConfig()
        self.clock = clock
        self.tracker = tracker or SubscriptionTracker(clock=clock)
        self.anomalies = AnomalyDetector(self.config, clock)
        self.subscriptions = SubscriptionDetector(self.config, clock)
        self.duplicates = DuplicateResolver(transactions, self.config, clock)

    def _fetch(self, operation: str, call: Callable[[], T]) -> T:
        try:
            return call()
        except EngineError:
            raise
        except Exception as exc:
            logger.error("[SOURCE] %s failed: %s", operation, exc)
            raise ExternalFailure(operation, exc) from exc

    def _run(self, operation: str, call: Callable[[], T]) -> Result[T]:
        try:
            return Success(call())
        except EngineError as exc:
            logger.warning("[INSIGHTS] %s failed: %s", operation, exc)
            return Failure(exc)

    def refresh_categories(self) -> Result[CategoryTree]:
        def call() -> CategoryTree:
            categories = self._fetch("load categories", self.categories.get_categories)
            rules = self._fetch("load categorization rules", self.categories.get_categorization_rules)
            tree = CategoryTree(categories)
            self.categorizer.update_categories(tree, rules)
            logger.info("[CATEGORIES] Loaded %d categories and %d rules", len(tree), len(rules))
            return tree

        return self._run("refresh categories", call)

    def add_transactions(self, transactions: list[Transaction]) -> Result[int]:
        return self._run(
            "add transactions",
            lambda: self._fetch("store transactions", lambda: self.transactions.add_many(transactions)),
        )

    def list_transactions(self, start: datetime, end: datetime) -> Result[list[Transaction]]:
        return self._run(
            "list transactions",
            lambda: self._fetch(
                "load transactions",
                lambda: self.transactions.get_transactions_by_date_range(start, end),
            ),
        )

    def categorize(self, transaction: Transaction) -> Result[CategorizationResult | None]:
        return self._run("categorize", lambda: self.categorizer.categorize(transaction))

    def categorize_range(self, start: datetime, end: datetime) -> Result[dict[str, CategorizationResult | None]]:
        def call() -> dict[str, CategorizationResult | None]:
            period = self._fetch(
                "load transactions",
                lambda: self.transactions.get_transactions_by_date_range(start, end),
            )
            return self.categorizer.categorize_many(period)

        return self._run("categorize range", call)

    def learn(self, transaction_id: str, category_id: str, feedback: str | None = None) -> Result[MerchantMapping]:
        def call() -> MerchantMapping:
            found = self._fetch("load transaction", lambda: self.transactions.get_by_ids([transaction_id]))
            if not found:
                raise NotFoundError("Transaction", transaction_id)
            return self.categorizer.learn(found[0], category_id, feedback)

        return self._run("learn", call)

    def detect_anomalies(self, start: datetime, end: datetime) -> Result[AnomalyReport]:
        def call() -> AnomalyReport:
            period = self._fetch(
                "load period transactions",
                lambda: self.transactions.get_transactions_by_date_range(start, end),
            )
            history_start = self.anomalies.history_start(start)
            history = self._fetch(
                "load history transactions",
                lambda: self.transactions.get_transactions_by_date_range(history_start, start),
            )
            return self.anomalies.detect_report(period, history)

        return self._run("detect anomalies", call)

    def detect_subscriptions(self, as_of: datetime | None = None, track: bool = True) -> Result[list[Subscription]]:
        def call() -> list[Subscription]:
            transactions = self._fetch("load transactions", self.transactions.get_all_transactions)
            detected = self.subscriptions.detect(transactions, as_of=as_of)
            if track:
                return self.tracker.sync_detected(detected)
            return detected

        return self._run("detect subscriptions", call)

    def upcoming_renewals(self, days: int = 7, now: datetime | None = None) -> Result[list[Subscription]]:
        return self._run("upcoming renewals", lambda: self.tracker.upcoming_renewals(days, now))

    def schedule_reminders(self, now: datetime | None = None) -> Result[list[SubscriptionAlert]]:
        return self._run("schedule reminders", lambda: self.tracker.schedule_reminders(now))

    def find_duplicates(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Result[list[DuplicateGroup]]:
        def call() -> list[DuplicateGroup]:
            if start is None or end is None:
                transactions = self._fetch("load transactions", self.transactions.get_all_transactions)
            else:
                transactions = self._fetch(
                    "load transactions",
                    lambda: self.transactions.get_transactions_by_date_range(start, end),
                )
            return self.duplicates.find_duplicate_groups(transactions)

        return self._run("find duplicates", call)

    def merge_transactions(
        self,
        transaction_ids: list[str],
        strategy: MergeStrategy = MergeStrategy.KEEP_MOST_DETAILED,
        keep_originals: bool = False,
    ) -> Result[MergeResult]:
        return self._run(
            "merge transactions",
            lambda: self._fetch(
                "merge transactions",
                lambda: self.duplicates.merge(transaction_ids, strategy, keep_originals),
            ),
        )
