import re
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal

from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.money import Money
from dari_insights.domain.statistics import coefficient_of_variation, mean_and_std
from dari_insights.domain.timefmt import days_between
from dari_insights.logger import get_logger
from dari_insights.merchants.normalizer import UNKNOWN_MERCHANT, display_name, normalize_merchant
from dari_insights.models import (
    Subscription,
    SubscriptionCategory,
    SubscriptionFrequency,
    SubscriptionStatus,
    Transaction,
)

logger = get_logger(__name__)

MIN_OCCURRENCES = 3
INTERVAL_TOLERANCE_RATIO = 0.15
INTERVAL_TOLERANCE_DAYS = 3.0
INACTIVE_AFTER_INTERVALS = 2

_KNOWN_SERVICES: tuple[tuple[str, str, SubscriptionCategory], ...] = (
    ("netflix", "Netflix", SubscriptionCategory.STREAMING),
    ("spotify", "Spotify", SubscriptionCategory.MUSIC),
    ("amazon prime", "Amazon Prime", SubscriptionCategory.STREAMING),
    ("prime video", "Amazon Prime", SubscriptionCategory.STREAMING),
    ("disney", "Disney+", SubscriptionCategory.STREAMING),
    ("hbo", "HBO Max", SubscriptionCategory.STREAMING),
    ("hulu", "Hulu", SubscriptionCategory.STREAMING),
    ("shahid", "Shahid", SubscriptionCategory.STREAMING),
    ("osn", "OSN+", SubscriptionCategory.STREAMING),
    ("youtube music", "YouTube Music", SubscriptionCategory.MUSIC),
    ("youtube", "YouTube Premium", SubscriptionCategory.STREAMING),
    ("apple music", "Apple Music", SubscriptionCategory.MUSIC),
    ("anghami", "Anghami", SubscriptionCategory.MUSIC),
    ("microsoft", "Microsoft 365", SubscriptionCategory.SOFTWARE),
    ("adobe", "Adobe Creative Cloud", SubscriptionCategory.SOFTWARE),
    ("dropbox", "Dropbox", SubscriptionCategory.CLOUD_STORAGE),
    ("icloud", "iCloud+", SubscriptionCategory.CLOUD_STORAGE),
    ("google one", "Google One", SubscriptionCategory.CLOUD_STORAGE),
    ("stc", "STC", SubscriptionCategory.TELECOM),
    ("mobily", "Mobily", SubscriptionCategory.TELECOM),
    ("zain", "Zain", SubscriptionCategory.TELECOM),
    ("fitness time", "Fitness Time", SubscriptionCategory.FITNESS),
    ("gym", "Gym Membership", SubscriptionCategory.FITNESS),
    ("hungerstation", "HungerStation", SubscriptionCategory.FOOD_DELIVERY),
    ("careem", "Careem Plus", SubscriptionCategory.TRANSPORT),
    ("playstation", "PlayStation Plus", SubscriptionCategory.GAMING),
    ("xbox", "Xbox Game Pass", SubscriptionCategory.GAMING),
    ("steam", "Steam", SubscriptionCategory.GAMING),
)

_SERVICE_PATTERNS = tuple(
    (re.compile(rf"\b{re.escape(pattern)}\b"), name, category)
    for pattern, name, category in _KNOWN_SERVICES
)

_CATEGORY_KEYWORDS: dict[SubscriptionCategory, tuple[str, ...]] = {
    SubscriptionCategory.STREAMING: ("tv", "video", "stream", "movie", "plus"),
    SubscriptionCategory.MUSIC: ("music", "radio", "podcast"),
    SubscriptionCategory.GAMING: ("game", "gaming"),
    SubscriptionCategory.CLOUD_STORAGE: ("storage", "drive", "backup"),
    SubscriptionCategory.SOFTWARE: ("software", "app", "license", "cloud"),
    SubscriptionCategory.TELECOM: ("mobile", "telecom", "internet", "data", "sim"),
    SubscriptionCategory.FITNESS: ("fitness", "sport", "club"),
    SubscriptionCategory.NEWS: ("news", "times", "journal", "magazine"),
    SubscriptionCategory.FOOD_DELIVERY: ("delivery", "food", "meal"),
    SubscriptionCategory.TRANSPORT: ("ride", "taxi", "transport"),
}


def identify_service(merchant_key: str, raw_name: str) -> tuple[str, SubscriptionCategory]:
    """Display name and category for a merchant, from the known-service table or keywords."""
    for pattern, name, category in _SERVICE_PATTERNS:
        if pattern.search(merchant_key):
            return name, category
    words = set(merchant_key.split())
    for category, keywords in _CATEGORY_KEYWORDS.items():
        if words.intersection(keywords):
            return display_name(raw_name), category
    return display_name(raw_name), SubscriptionCategory.OTHER


def interval_tolerance(days: int) -> float:
    return max(days * INTERVAL_TOLERANCE_RATIO, INTERVAL_TOLERANCE_DAYS)


def classify_interval(mean_interval: float) -> SubscriptionFrequency | None:
    """Nearest standard bucket whose tolerance band contains the mean interval."""
    candidates = [
        frequency for frequency in SubscriptionFrequency
        if abs(mean_interval - frequency.days) <= interval_tolerance(frequency.days)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda frequency: abs(mean_interval - frequency.days))


def _cluster_by_amount(transactions: list[Transaction], tolerance: float) -> list[list[Transaction]]:
    """
    Split a merchant's payments into price tiers. Each payment joins the
    cluster whose latest amount is within tolerance, so gradual price
    changes stay in one cluster while a different plan starts a new one.
    """
    clusters: list[list[Transaction]] = []
    for transaction in sorted(transactions, key=lambda t: (t.date, t.id)):
        amount = transaction.magnitude
        best: list[Transaction] | None = None
        best_drift: Decimal | None = None
        for cluster in clusters:
            reference = cluster[-1].magnitude
            if reference == 0:
                drift = Decimal(0) if amount == 0 else Decimal(1)
            else:
                drift = abs(amount - reference) / reference
            if drift <= Decimal(str(tolerance)) and (best_drift is None or drift < best_drift):
                best, best_drift = cluster, drift
        if best is None:
            clusters.append([transaction])
        else:
            best.append(transaction)
    return clusters


def _slug(merchant_key: str) -> str:
    return re.sub(r"[^\w]+", "-", merchant_key).strip("-") or "merchant"


class SubscriptionDetector:
    """
    Infers recurring subscriptions from payment history.

    Payments are grouped by normalized merchant and currency, split into
    amount clusters, and kept when three or more payments recur at a
    regular, recognised interval.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock

    def detect(
        self,
        transactions: Iterable[Transaction],
        as_of: datetime | None = None,
    ) -> list[Subscription]:
        reference = as_of or self.clock()
        groups: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
        for transaction in transactions:
            if not transaction.is_outgoing:
                continue
            key = normalize_merchant(transaction.merchant_or_description)
            if key == UNKNOWN_MERCHANT:
                continue
            groups[(key, transaction.amount.currency)].append(transaction)

        subscriptions: list[Subscription] = []
        used_ids: set[str] = set()
        for (merchant_key, _), items in sorted(groups.items()):
            if len(items) < MIN_OCCURRENCES:
                continue
            for cluster in _cluster_by_amount(items, self.config.subscription_amount_tolerance):
                subscription = self._analyse(merchant_key, cluster, reference)
                if subscription is None:
                    continue
                if subscription.id in used_ids:
                    subscription = subscription.model_copy(
                        update={"id": f"{subscription.id}-{len(used_ids) + 1}"}
                    )
                used_ids.add(subscription.id)
                subscriptions.append(subscription)

        subscriptions.sort(key=lambda s: (s.service_name.lower(), s.start_date))
        logger.info("[SUBSCRIPTIONS] Detected %d subscriptions across %d merchants", len(subscriptions), len(groups))
        return subscriptions

    def _analyse(
        self,
        merchant_key: str,
        cluster: list[Transaction],
        as_of: datetime,
    ) -> Subscription | None:
        if len(cluster) < MIN_OCCURRENCES:
            return None

        dates = [transaction.date for transaction in cluster]
        intervals = [days_between(first, second) for first, second in zip(dates, dates[1:])]
        mean_interval, interval_std = mean_and_std(intervals)
        if mean_interval <= 0:
            return None

        frequency = classify_interval(mean_interval)
        if frequency is None:
            logger.debug("[SUBSCRIPTIONS] '%s' interval %.1f days fits no bucket", merchant_key, mean_interval)
            return None
        tolerance = interval_tolerance(frequency.days)
        if interval_std > tolerance:
            logger.debug("[SUBSCRIPTIONS] '%s' intervals too irregular (std %.1f)", merchant_key, interval_std)
            return None

        latest = cluster[-1]
        currency = latest.amount.currency
        magnitudes = [transaction.magnitude for transaction in cluster]
        actual = Money(amount=latest.magnitude, currency=currency)

        last_payment = dates[-1]
        age_days = days_between(last_payment, as_of)
        status = (
            SubscriptionStatus.ACTIVE
            if age_days < INACTIVE_AFTER_INTERVALS * mean_interval
            else SubscriptionStatus.EXPIRED
        )

        service_name, category = identify_service(merchant_key, latest.merchant_or_description)
        return Subscription(
            id=f"sub-{_slug(merchant_key)}-{dates[0]:%Y%m%d}",
            service_name=service_name,
            merchant_name=latest.merchant_name or latest.description,
            category=category,
            frequency=frequency,
            monthly_amount=actual.times(frequency.monthly_factor),
            actual_amount=actual,
            status=status,
            start_date=dates[0],
            next_renewal_date=last_payment + timedelta(days=frequency.days),
            last_payment_date=last_payment,
            renewal_count=len(cluster),
            has_variable_amount=len(set(magnitudes)) > 1,
            transaction_history=tuple(transaction.id for transaction in cluster),
            confidence=self._confidence(mean_interval, interval_std, frequency, magnitudes),
            average_interval_days=round(mean_interval, 2),
            total_paid=Money(amount=sum(magnitudes, Decimal(0)), currency=currency),
            reminder_days_before=self.config.reminder_days_before,
            tags=("auto-detected", category.value.lower()),
        )

    @staticmethod
    def _confidence(
        mean_interval: float,
        interval_std: float,
        frequency: SubscriptionFrequency,
        magnitudes: list[Decimal],
    ) -> float:
        # Weighted: date regularity 0.5, amount consistency 0.3, bucket fit 0.2
        regularity = max(0.0, 1.0 - interval_std / mean_interval)
        consistency = max(0.0, 1.0 - coefficient_of_variation([float(m) for m in magnitudes]))
        fit = max(0.0, 1.0 - abs(mean_interval - frequency.days) / interval_tolerance(frequency.days))
        return round(min(1.0, 0.5 * regularity + 0.3 * consistency + 0.2 * fit), 4)
