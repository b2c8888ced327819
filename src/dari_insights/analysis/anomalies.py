from collections import Counter, defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from time import perf_counter

from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.statistics import mean_and_std, percentage_change, z_score
from dari_insights.domain.timefmt import format_duration, month_key, subtract_months
from dari_insights.logger import get_logger
from dari_insights.merchants.normalizer import UNKNOWN_MERCHANT, normalize_merchant
from dari_insights.models import (
    AnomalyReport,
    AnomalySeverity,
    AnomalyType,
    DetectedAnomaly,
    SkippedCheck,
    Transaction,
)

logger = get_logger(__name__)

MIN_SAMPLES = 3
MIN_MONTHS = 2
HIGH_Z = 3.0
MEDIUM_Z = 2.0
CATEGORY_Z = 2.5
CATEGORY_HIGH_Z = 3.5

BURST_COUNT = 4
BURST_WINDOW = timedelta(minutes=60)
BURST_TIGHT_WINDOW = timedelta(minutes=30)

LOW_ACTIVITY_SHARE = 0.02
MIN_HOUR_PROFILE = 30
DEFAULT_LOW_ACTIVITY_HOURS = frozenset({0, 1, 2, 3, 4, 5, 23})
NIGHT_HOURS = range(1, 5)
TIME_AMOUNT = Decimal("100")
TIME_HIGH_AMOUNT = Decimal("500")
WEEKEND_RATIO = 3

DUPLICATE_GAP = timedelta(minutes=5)
DUPLICATE_TIGHT_GAP = timedelta(minutes=2)
AMOUNT_TOLERANCE = Decimal("0.01")

NEW_MERCHANT_AMOUNT = Decimal("200")
NEW_MERCHANT_HIGH_AMOUNT = Decimal("500")
NEW_MERCHANT_CONFIDENCE = 0.7

BucketKey = tuple[str, str]


@dataclass
class _DetectionRun:
    now: datetime
    anomalies: list[DetectedAnomaly] = field(default_factory=list)
    skipped: list[SkippedCheck] = field(default_factory=list)

    def flag(
        self,
        anomaly_type: AnomalyType,
        severity: AnomalySeverity,
        description: str,
        confidence: float,
        transaction_id: str | None = None,
        category_id: str | None = None,
    ) -> None:
        self.anomalies.append(DetectedAnomaly(
            transaction_id=transaction_id,
            type=anomaly_type,
            severity=severity,
            description=description,
            confidence=round(max(0.0, min(1.0, confidence)), 4),
            detected_at=self.now,
            category_id=category_id,
        ))

    def skip(self, detector: str, reason: str, subject: str | None = None) -> None:
        self.skipped.append(SkippedCheck(detector=detector, reason=reason, subject=subject))


def _bucket(transaction: Transaction) -> BucketKey | None:
    # Amounts are only comparable within one category and one currency
    if transaction.category_id is None:
        return None
    return transaction.category_id, transaction.amount.currency


def _group_by_bucket(transactions: Iterable[Transaction]) -> dict[BucketKey, list[Transaction]]:
    groups: dict[BucketKey, list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        key = _bucket(transaction)
        if key is not None:
            groups[key].append(transaction)
    return groups


def _merchant_key(transaction: Transaction) -> str:
    return normalize_merchant(transaction.merchant_or_description)


def _amount(transaction: Transaction) -> float:
    return float(transaction.magnitude)


def _subject(key: BucketKey) -> str:
    return f"{key[0]} ({key[1]})"


class AnomalyDetector:
    """
    Flags unusual spending in a period against a trailing history.

    Only outgoing transactions are analysed. Each check runs independently;
    a check without enough data records a SkippedCheck and the run continues.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock
        self._checks: list[tuple[str, Callable[[list[Transaction], list[Transaction], _DetectionRun], None]]] = [
            ("high_amount", self._check_high_amounts),
            ("category_spending", self._check_category_spending),
            ("frequent_merchant", self._check_frequent_merchants),
            ("time_pattern", self._check_time_patterns),
            ("duplicates", self._check_duplicates),
            ("new_merchant", self._check_new_merchants),
        ]

    def history_start(self, period_start: datetime) -> datetime:
        return subtract_months(period_start, self.config.anomaly_history_months)

    def detect(
        self,
        period: Iterable[Transaction],
        history: Iterable[Transaction] = (),
    ) -> list[DetectedAnomaly]:
        return list(self.detect_report(period, history).anomalies)

    def detect_report(
        self,
        period: Iterable[Transaction],
        history: Iterable[Transaction] = (),
    ) -> AnomalyReport:
        started = perf_counter()
        period_expenses = [t for t in period if t.is_outgoing]
        period_ids = {t.id for t in period_expenses}
        history_expenses = [t for t in history if t.is_outgoing and t.id not in period_ids]

        run = _DetectionRun(now=self.clock())
        if not period_expenses:
            run.skip("all", "no outgoing transactions in period")
        else:
            for _, check in self._checks:
                check(period_expenses, history_expenses, run)

        anomalies = sorted(
            run.anomalies,
            key=lambda a: (-a.severity.priority, -a.confidence, a.type.value, a.transaction_id or "", a.category_id or ""),
        )
        logger.info(
            "[ANOMALY] %d period / %d history transactions -> %d anomalies, %d skipped checks in %s",
            len(period_expenses),
            len(history_expenses),
            len(anomalies),
            len(run.skipped),
            format_duration(perf_counter() - started),
        )
        return AnomalyReport(anomalies=tuple(anomalies), skipped=tuple(run.skipped))

    # 1. Single transactions far above their category's usual amount
    def _check_high_amounts(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        history_groups = _group_by_bucket(history)
        for key, items in _group_by_bucket(period).items():
            baseline = [_amount(t) for t in history_groups.get(key, [])]
            if len(baseline) < MIN_SAMPLES:
                baseline.extend(_amount(t) for t in items)
            if len(baseline) < MIN_SAMPLES:
                run.skip("high_amount", f"fewer than {MIN_SAMPLES} samples", _subject(key))
                continue

            mean, std = mean_and_std(baseline)
            if std == 0:
                run.skip("high_amount", "no variance in amounts", _subject(key))
                continue

            for transaction in items:
                z = z_score(_amount(transaction), mean, std)
                if z > HIGH_Z:
                    severity, confidence = AnomalySeverity.HIGH, min(1.0, z / 5)
                elif z > MEDIUM_Z:
                    severity, confidence = AnomalySeverity.MEDIUM, z / 3
                else:
                    continue
                run.flag(
                    AnomalyType.UNUSUALLY_HIGH_AMOUNT,
                    severity,
                    f"{transaction.amount.format()} is {z:.1f} standard deviations above the usual "
                    f"{mean:.2f} {key[1]} for this category",
                    confidence,
                    transaction_id=transaction.id,
                    category_id=key[0],
                )

    # 2. Period total per category against historical monthly totals
    def _check_category_spending(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        monthly: dict[BucketKey, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        for transaction in history:
            key = _bucket(transaction)
            if key is not None:
                monthly[key][month_key(transaction.date)] += _amount(transaction)

        for key, items in _group_by_bucket(period).items():
            totals = list(monthly.get(key, {}).values())
            if len(totals) < MIN_MONTHS:
                run.skip("category_spending", f"fewer than {MIN_MONTHS} months of history", _subject(key))
                continue
            mean, std = mean_and_std(totals)
            if std == 0:
                run.skip("category_spending", "no variance in monthly totals", _subject(key))
                continue

            period_total = sum(_amount(t) for t in items)
            z = z_score(period_total, mean, std)
            if z <= CATEGORY_Z:
                continue
            run.flag(
                AnomalyType.UNUSUALLY_HIGH_CATEGORY_SPENDING,
                AnomalySeverity.HIGH if z > CATEGORY_HIGH_Z else AnomalySeverity.MEDIUM,
                f"Spent {period_total:.2f} {key[1]}, {percentage_change(period_total, mean):.0f}% above the "
                f"monthly average of {mean:.2f} {key[1]}",
                min(1.0, z / 4),
                category_id=key[0],
            )

    # 3. Bursts of purchases at one merchant
    def _check_frequent_merchants(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        groups: dict[tuple[str, object], list[Transaction]] = defaultdict(list)
        for transaction in period:
            merchant = _merchant_key(transaction)
            if merchant != UNKNOWN_MERCHANT:
                groups[(merchant, transaction.date.date())].append(transaction)

        for (merchant, day), items in groups.items():
            if len(items) < BURST_COUNT:
                continue
            items.sort(key=lambda t: (t.date, t.id))

            best_start: int | None = None
            best_span: timedelta | None = None
            for index in range(len(items) - BURST_COUNT + 1):
                span = items[index + BURST_COUNT - 1].date - items[index].date
                if span <= BURST_WINDOW and (best_span is None or span < best_span):
                    best_start, best_span = index, span
            if best_start is None or best_span is None:
                continue

            window_start = items[best_start].date
            window = [t for t in items if window_start <= t.date <= window_start + BURST_WINDOW]
            minutes = int(best_span.total_seconds() // 60)
            run.flag(
                AnomalyType.FREQUENT_MERCHANT_TRANSACTIONS,
                AnomalySeverity.MEDIUM,
                f"{len(window)} transactions at '{merchant}' within {minutes} minutes on {day}",
                0.9 if best_span <= BURST_TIGHT_WINDOW else 0.7,
                transaction_id=window[-1].id,
            )

    def _low_activity_hours(self, history: list[Transaction]) -> frozenset[int]:
        if len(history) < MIN_HOUR_PROFILE:
            return DEFAULT_LOW_ACTIVITY_HOURS
        counts = Counter(transaction.date.hour for transaction in history)
        total = len(history)
        return frozenset(hour for hour in range(24) if counts.get(hour, 0) / total < LOW_ACTIVITY_SHARE)

    # 4. Spending at unusual hours, and weekend-heavy spending
    def _check_time_patterns(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        low_hours = self._low_activity_hours(history)

        for transaction in period:
            hour = transaction.date.hour
            amount = transaction.magnitude
            if hour not in low_hours or amount <= TIME_AMOUNT:
                continue
            night = hour in NIGHT_HOURS
            run.flag(
                AnomalyType.UNUSUAL_TIME_PATTERN,
                AnomalySeverity.HIGH if night or amount > TIME_HIGH_AMOUNT else AnomalySeverity.MEDIUM,
                f"{transaction.amount.format()} spent at {transaction.date:%H:%M}, outside usual activity hours",
                0.9 if night else 0.6,
                transaction_id=transaction.id,
            )

        weekend = [_amount(t) for t in period if t.date.weekday() in self.config.weekend_days]
        weekday = [_amount(t) for t in period if t.date.weekday() not in self.config.weekend_days]
        if not weekend or not weekday:
            run.skip("time_pattern", "period lacks weekday or weekend spending", "weekend")
            return
        weekend_average = sum(weekend) / len(weekend)
        weekday_average = sum(weekday) / len(weekday)
        if weekend_average > WEEKEND_RATIO * weekday_average:
            run.flag(
                AnomalyType.UNUSUAL_TIME_PATTERN,
                AnomalySeverity.MEDIUM,
                f"Weekend purchases average {weekend_average:.2f}, over {WEEKEND_RATIO}x the "
                f"weekday average of {weekday_average:.2f}",
                0.8,
            )

    # 5. Same charge repeated within minutes
    def _check_duplicates(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        ordered = sorted(period, key=lambda t: (t.date, t.id))
        for earlier, later in zip(ordered, ordered[1:]):
            if earlier.amount.currency != later.amount.currency:
                continue
            if abs(earlier.magnitude - later.magnitude) >= AMOUNT_TOLERANCE:
                continue
            if _merchant_key(earlier) != _merchant_key(later) or earlier.category_id != later.category_id:
                continue
            gap = later.date - earlier.date
            if gap > DUPLICATE_GAP:
                continue
            run.flag(
                AnomalyType.POTENTIAL_DUPLICATE,
                AnomalySeverity.HIGH,
                f"{later.amount.format()} at '{later.merchant_or_description}' repeats transaction "
                f"{earlier.id} after {int(gap.total_seconds())} seconds",
                0.95 if gap <= DUPLICATE_TIGHT_GAP else 0.8,
                transaction_id=later.id,
                category_id=later.category_id,
            )

    # 6. Large first purchase at a merchant never seen before
    def _check_new_merchants(
        self, period: list[Transaction], history: list[Transaction], run: _DetectionRun
    ) -> None:
        if not history:
            run.skip("new_merchant", "no history to compare merchants against")
            return
        known = {_merchant_key(transaction) for transaction in history}
        for transaction in period:
            merchant = _merchant_key(transaction)
            if merchant == UNKNOWN_MERCHANT or merchant in known:
                continue
            amount = transaction.magnitude
            if amount <= NEW_MERCHANT_AMOUNT:
                continue
            run.flag(
                AnomalyType.UNUSUAL_LOCATION,
                AnomalySeverity.HIGH if amount > NEW_MERCHANT_HIGH_AMOUNT else AnomalySeverity.MEDIUM,
                f"{transaction.amount.format()} at new merchant '{transaction.merchant_or_description}'",
                NEW_MERCHANT_CONFIDENCE,
                transaction_id=transaction.id,
            )
