from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal

from dari_insights.domain.money import Money, total
from dari_insights.errors import CurrencyMismatchError, NotFoundError, ValidationError
from dari_insights.logger import get_logger
from dari_insights.models import (
    Subscription,
    SubscriptionAlert,
    SubscriptionAlertType,
    SubscriptionCategory,
    SubscriptionStatus,
)
from dari_insights.repositories import InMemorySubscriptionRepository, SubscriptionRepository

logger = get_logger(__name__)

# Statuses set by the user that a fresh detection run must not overwrite
_USER_STATUSES = (SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED)


class SubscriptionTracker:
    """Keeps detected subscriptions in a repository and raises renewal alerts."""

    def __init__(
        self,
        repository: SubscriptionRepository | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repository = repository if repository is not None else InMemorySubscriptionRepository()
        self.clock = clock

    def _require(self, subscription_id: str) -> Subscription:
        subscription = self.repository.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    def sync_detected(self, detected: Iterable[Subscription]) -> list[Subscription]:
        """Store detection results, keeping user-set statuses and flagging price rises."""
        stored: list[Subscription] = []
        for subscription in detected:
            existing = self.repository.get_by_id(subscription.id)
            if existing is None:
                stored.append(self.repository.create(subscription))
                continue

            update: dict[str, object] = {
                "reminder_enabled": existing.reminder_enabled,
                "reminder_days_before": existing.reminder_days_before,
            }
            if existing.status in _USER_STATUSES:
                update["status"] = existing.status
                update["cancellation_reason"] = existing.cancellation_reason
            merged = subscription.model_copy(update=update)
            if (
                merged.actual_amount.currency == existing.actual_amount.currency
                and merged.actual_amount > existing.actual_amount
            ):
                self.notify_price_increase(existing, merged.actual_amount)
            stored.append(self.repository.update(merged))

        logger.info("[SUBSCRIPTIONS] Synced %d detected subscriptions", len(stored))
        return stored

    def get_by_category(self, category: SubscriptionCategory) -> list[Subscription]:
        return self.repository.get_by_category(category)

    def upcoming_renewals(self, days: int = 7, now: datetime | None = None) -> list[Subscription]:
        if days < 0:
            raise ValidationError("days must be non-negative")
        reference = now or self.clock()
        horizon = reference + timedelta(days=days)
        return [
            subscription for subscription in self.repository.get_all_active()
            if reference <= subscription.next_renewal_date <= horizon
        ]

    def overdue_renewals(self, now: datetime | None = None) -> list[Subscription]:
        reference = now or self.clock()
        return [
            subscription for subscription in self.repository.get_all_active()
            if subscription.next_renewal_date < reference
        ]

    def schedule_reminders(self, now: datetime | None = None) -> list[SubscriptionAlert]:
        """
        Create renewal (or trial expiry) alerts for subscriptions inside their
        reminder window. Alert ids are derived from the renewal date, so a
        second run for the same renewal creates nothing new.
        """
        reference = now or self.clock()
        existing_ids = {alert.id for alert in self.repository.get_alerts()}
        created: list[SubscriptionAlert] = []

        for subscription in self.repository.get_all_active():
            if not subscription.reminder_enabled:
                continue
            window_start = subscription.next_renewal_date - timedelta(days=subscription.reminder_days_before)
            if not window_start <= reference <= subscription.next_renewal_date:
                continue

            renewal_day = f"{subscription.next_renewal_date:%Y%m%d}"
            if subscription.status == SubscriptionStatus.TRIAL:
                alert_type = SubscriptionAlertType.TRIAL_EXPIRING
                alert_id = f"alert-{subscription.id}-trial-{renewal_day}"
                title = f"{subscription.service_name} trial ending"
                message = (
                    f"Your {subscription.service_name} trial ends on "
                    f"{subscription.next_renewal_date:%Y-%m-%d}."
                )
            else:
                alert_type = SubscriptionAlertType.RENEWAL_REMINDER
                alert_id = f"alert-{subscription.id}-renewal-{renewal_day}"
                title = f"{subscription.service_name} renews soon"
                message = (
                    f"{subscription.actual_amount.format()} will be charged on "
                    f"{subscription.next_renewal_date:%Y-%m-%d}."
                )

            if alert_id in existing_ids:
                continue
            alert = SubscriptionAlert(
                id=alert_id,
                subscription_id=subscription.id,
                alert_type=alert_type,
                title=title,
                message=message,
                created_at=reference,
            )
            created.append(self.repository.create_alert(alert))
            existing_ids.add(alert_id)

        if created:
            logger.info("[SUBSCRIPTIONS] Scheduled %d reminders", len(created))
        return created

    def record_renewal(
        self,
        subscription_id: str,
        amount: Money,
        transaction_id: str,
        paid_at: datetime | None = None,
    ) -> Subscription:
        subscription = self._require(subscription_id)
        if amount.currency != subscription.actual_amount.currency:
            raise CurrencyMismatchError(subscription.actual_amount.currency, amount.currency, "record renewal")
        paid = paid_at or self.clock()
        magnitude = abs(amount)
        if magnitude > subscription.actual_amount:
            self.notify_price_increase(subscription, magnitude)

        total_paid = subscription.total_paid or Money.zero(magnitude.currency)
        history = subscription.transaction_history
        if transaction_id not in history:
            history = history + (transaction_id,)
        updated = subscription.model_copy(update={
            "actual_amount": magnitude,
            "monthly_amount": magnitude.times(subscription.frequency.monthly_factor),
            "has_variable_amount": subscription.has_variable_amount or magnitude != subscription.actual_amount,
            "last_payment_date": paid,
            "next_renewal_date": paid + timedelta(days=subscription.frequency.days),
            "renewal_count": subscription.renewal_count + 1,
            "transaction_history": history,
            "total_paid": total_paid + magnitude,
            "status": SubscriptionStatus.ACTIVE
            if subscription.status == SubscriptionStatus.EXPIRED
            else subscription.status,
        })
        logger.debug("[SUBSCRIPTIONS] Renewal recorded for %s (%s)", subscription_id, magnitude)
        return self.repository.update(updated)

    def update_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        reason: str | None = None,
    ) -> Subscription:
        subscription = self._require(subscription_id)
        updated = subscription.model_copy(update={
            "status": status,
            "cancellation_reason": reason if status == SubscriptionStatus.CANCELLED else None,
            "reminder_enabled": subscription.reminder_enabled and status != SubscriptionStatus.CANCELLED,
        })
        logger.info("[SUBSCRIPTIONS] %s status %s -> %s", subscription_id, subscription.status.value, status.value)
        return self.repository.update(updated)

    def notify_price_increase(self, subscription: Subscription, new_amount: Money) -> SubscriptionAlert:
        old = subscription.actual_amount
        if old.is_zero():
            change = ""
        else:
            percent = (new_amount.amount - old.amount) / old.amount * Decimal(100)
            change = f" (+{percent:.1f}%)"
        alert = SubscriptionAlert(
            id=f"alert-{subscription.id}-price-{new_amount.amount}",
            subscription_id=subscription.id,
            alert_type=SubscriptionAlertType.PRICE_INCREASE,
            title=f"{subscription.service_name} price increased",
            message=f"Price went from {old.format()} to {new_amount.format()}{change}.",
            created_at=self.clock(),
        )
        existing = {item.id for item in self.repository.get_alerts(subscription.id)}
        if alert.id in existing:
            return alert
        logger.info("[SUBSCRIPTIONS] Price increase for %s: %s -> %s", subscription.id, old, new_amount)
        return self.repository.create_alert(alert)

    def get_alerts(self, subscription_id: str | None = None) -> list[SubscriptionAlert]:
        return self.repository.get_alerts(subscription_id)

    def monthly_total(self, currency: str) -> Money:
        """Monthly cost of the active subscriptions billed in the given currency."""
        return total(
            (
                subscription.monthly_amount
                for subscription in self.repository.get_all_active()
                if subscription.monthly_amount.currency == currency.upper()
            ),
            currency,
        )
