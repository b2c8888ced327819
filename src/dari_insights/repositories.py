import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from dari_insights.errors import NotFoundError
from dari_insights.models import (
    CategorizationRule,
    Category,
    MerchantFeedback,
    MerchantMapping,
    Subscription,
    SubscriptionAlert,
    SubscriptionCategory,
    Transaction,
)


class TransactionSource(Protocol):
    def get_transactions_by_date_range(self, start: datetime, end: datetime) -> list[Transaction]: ...

    def get_all_transactions(self) -> list[Transaction]: ...


class TransactionStore(TransactionSource, Protocol):
    def get_by_ids(self, transaction_ids: Iterable[str]) -> list[Transaction]: ...

    def add_many(self, transactions: Iterable[Transaction]) -> int: ...

    def create(self, transaction: Transaction) -> Transaction: ...

    def delete_many(self, transaction_ids: Iterable[str]) -> int: ...


class CategorySource(Protocol):
    def get_categories(self) -> list[Category]: ...

    def get_categorization_rules(self) -> list[CategorizationRule]: ...


class MerchantMappingRepository(Protocol):
    def get_by_id(self, mapping_id: str) -> MerchantMapping | None: ...

    def get_by_merchant_name(self, merchant_name: str) -> MerchantMapping | None: ...

    def find_by_normalized_name(self, normalized_name: str) -> MerchantMapping | None: ...

    def find_similar_mappings(
        self, normalized_name: str, threshold: float = 0.6, limit: int = 10
    ) -> list[MerchantMapping]: ...

    def create(self, mapping: MerchantMapping) -> MerchantMapping: ...

    def update(self, mapping: MerchantMapping) -> MerchantMapping: ...

    def delete(self, mapping_id: str) -> None: ...

    def create_bulk(self, mappings: Iterable[MerchantMapping]) -> int: ...

    def delete_bulk(self, mapping_ids: Iterable[str]) -> int: ...

    def delete_all(self) -> None: ...

    def find_duplicates(self) -> list[list[MerchantMapping]]: ...

    def get_all_mappings(self) -> list[MerchantMapping]: ...

    def record_feedback(self, feedback: MerchantFeedback) -> None: ...

    def get_feedback(self, mapping_id: str | None = None) -> list[MerchantFeedback]: ...


class SubscriptionRepository(Protocol):
    def get_all_active(self) -> list[Subscription]: ...

    def get_all(self) -> list[Subscription]: ...

    def get_by_category(self, category: SubscriptionCategory) -> list[Subscription]: ...

    def get_by_id(self, subscription_id: str) -> Subscription | None: ...

    def create(self, subscription: Subscription) -> Subscription: ...

    def update(self, subscription: Subscription) -> Subscription: ...

    def create_alert(self, alert: SubscriptionAlert) -> SubscriptionAlert: ...

    def get_alerts(self, subscription_id: str | None = None) -> list[SubscriptionAlert]: ...


class InMemoryTransactionStore:
    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._lock = threading.RLock()
        self._transactions: dict[str, Transaction] = {}
        self.add_many(transactions)

    def get_transactions_by_date_range(self, start: datetime, end: datetime) -> list[Transaction]:
        with self._lock:
            selected = [t for t in self._transactions.values() if start <= t.date <= end]
        return sorted(selected, key=lambda t: (t.date, t.id))

    def get_all_transactions(self) -> list[Transaction]:
        with self._lock:
            return sorted(self._transactions.values(), key=lambda t: (t.date, t.id))

    def get_by_ids(self, transaction_ids: Iterable[str]) -> list[Transaction]:
        with self._lock:
            return [self._transactions[i] for i in transaction_ids if i in self._transactions]

    def add_many(self, transactions: Iterable[Transaction]) -> int:
        count = 0
        with self._lock:
            for transaction in transactions:
                self._transactions[transaction.id] = transaction
                count += 1
        return count

    def create(self, transaction: Transaction) -> Transaction:
        with self._lock:
            self._transactions[transaction.id] = transaction
        return transaction

    def delete_many(self, transaction_ids: Iterable[str]) -> int:
        count = 0
        with self._lock:
            for transaction_id in transaction_ids:
                if self._transactions.pop(transaction_id, None) is not None:
                    count += 1
        return count


class InMemoryCategorySource:
    def __init__(
        self,
        categories: Iterable[Category] = (),
        rules: Iterable[CategorizationRule] = (),
    ) -> None:
        self._categories = list(categories)
        self._rules = list(rules)

    def get_categories(self) -> list[Category]:
        return list(self._categories)

    def get_categorization_rules(self) -> list[CategorizationRule]:
        return list(self._rules)


class InMemorySubscriptionRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriptions: dict[str, Subscription] = {}
        self._alerts: list[SubscriptionAlert] = []

    def get_all(self) -> list[Subscription]:
        with self._lock:
            return sorted(self._subscriptions.values(), key=lambda s: (s.next_renewal_date, s.id))

    def get_all_active(self) -> list[Subscription]:
        return [subscription for subscription in self.get_all() if subscription.is_active]

    def get_by_category(self, category: SubscriptionCategory) -> list[Subscription]:
        return [subscription for subscription in self.get_all() if subscription.category == category]

    def get_by_id(self, subscription_id: str) -> Subscription | None:
        with self._lock:
            return self._subscriptions.get(subscription_id)

    def create(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    def update(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.id not in self._subscriptions:
                raise NotFoundError("Subscription", subscription.id)
            self._subscriptions[subscription.id] = subscription
        return subscription

    def create_alert(self, alert: SubscriptionAlert) -> SubscriptionAlert:
        with self._lock:
            self._alerts.append(alert)
        return alert

    def get_alerts(self, subscription_id: str | None = None) -> list[SubscriptionAlert]:
        with self._lock:
            if subscription_id is None:
                return list(self._alerts)
            return [alert for alert in self._alerts if alert.subscription_id == subscription_id]
