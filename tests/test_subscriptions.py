from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from dari_insights.analysis.subscriptions import SubscriptionDetector, classify_interval, identify_service
from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.money import Money
from dari_insights.models import (
    SubscriptionCategory,
    SubscriptionFrequency,
    SubscriptionStatus,
    Transaction,
    TransactionType,
)

START = datetime(2024, 1, 5, 8, 0)


def _payments(merchant, amounts, every_days, start=START, prefix="t", currency="SAR"):
    return [
        Transaction(
            id=f"{prefix}{index}",
            account_id="acc-1",
            amount=Money.of(amount, currency),
            description=f"{merchant} payment",
            merchant_name=merchant,
            date=start + timedelta(days=every_days * index),
        )
        for index, amount in enumerate(amounts)
    ]


@pytest.fixture
def detector():
    return SubscriptionDetector(EngineConfig())


def test_netflix_monthly_subscription(detector):
    payments = _payments("NETFLIX.COM", ["56.00"] * 3, 30)

    subscriptions = detector.detect(payments, as_of=START + timedelta(days=65))

    assert len(subscriptions) == 1
    netflix = subscriptions[0]
    assert netflix.service_name == "Netflix"
    assert netflix.category == SubscriptionCategory.STREAMING
    assert netflix.frequency == SubscriptionFrequency.MONTHLY
    assert netflix.monthly_amount == Money.of("56.00")
    assert netflix.status == SubscriptionStatus.ACTIVE
    assert netflix.renewal_count == 3
    assert netflix.total_paid == Money.of("168.00")
    assert netflix.next_renewal_date == START + timedelta(days=90)
    assert netflix.transaction_history == ("t0", "t1", "t2")
    assert netflix.has_variable_amount is False
    assert netflix.confidence == 1.0


def test_two_payments_are_not_a_subscription(detector):
    payments = _payments("NETFLIX.COM", ["56.00"] * 2, 30)
    assert detector.detect(payments, as_of=START + timedelta(days=40)) == []


def test_stale_subscription_is_expired(detector):
    payments = _payments("Spotify", ["21.99"] * 4, 30)

    subscriptions = detector.detect(payments, as_of=START + timedelta(days=200))

    assert len(subscriptions) == 1
    assert subscriptions[0].status == SubscriptionStatus.EXPIRED
    assert subscriptions[0].is_active is False


def test_weekly_and_yearly_monthly_amounts(detector):
    weekly = _payments("Fitness Time", ["50"] * 4, 7, prefix="w")
    yearly = _payments("iCloud", ["120"] * 3, 365, prefix="y", start=datetime(2021, 6, 1))

    subscriptions = {s.service_name: s for s in detector.detect(weekly + yearly, as_of=datetime(2023, 6, 20))}

    assert subscriptions["Fitness Time"].frequency == SubscriptionFrequency.WEEKLY
    assert subscriptions["Fitness Time"].monthly_amount == Money.of("216.67")
    assert subscriptions["iCloud+"].frequency == SubscriptionFrequency.YEARLY
    assert subscriptions["iCloud+"].monthly_amount == Money.of("10.00")


def test_irregular_intervals_are_rejected(detector):
    dates = [0, 9, 40, 48, 90]
    payments = [
        Transaction(
            id=f"t{index}",
            account_id="acc-1",
            amount=Money.of("30"),
            merchant_name="Random Cafe",
            date=START + timedelta(days=day),
        )
        for index, day in enumerate(dates)
    ]
    assert detector.detect(payments, as_of=START + timedelta(days=95)) == []


def test_price_tiers_split_into_clusters(detector):
    basic = _payments("Shahid", ["20"] * 3, 30, prefix="b")
    premium = _payments("Shahid", ["75"] * 3, 30, prefix="p", start=START + timedelta(days=2))

    subscriptions = detector.detect(basic + premium, as_of=START + timedelta(days=70))

    assert sorted(s.actual_amount.amount for s in subscriptions) == [Decimal("20"), Decimal("75")]
    assert len({s.id for s in subscriptions}) == 2


def test_small_price_change_stays_in_one_subscription(detector):
    payments = _payments("Anghami", ["20.00", "20.00", "21.00"], 30)

    subscriptions = detector.detect(payments, as_of=START + timedelta(days=70))

    assert len(subscriptions) == 1
    assert subscriptions[0].has_variable_amount is True
    assert subscriptions[0].actual_amount == Money.of("21.00")
    assert subscriptions[0].confidence < 1.0


def test_currencies_and_income_are_kept_apart(detector):
    sar = _payments("Netflix", ["56"] * 2, 30, prefix="s")
    usd = _payments("Netflix", ["15"], 30, prefix="u", start=START + timedelta(days=60), currency="USD")
    refund = Transaction(
        id="r1",
        account_id="acc-1",
        amount=Money.of("56"),
        type=TransactionType.CREDIT,
        merchant_name="Netflix",
        date=START + timedelta(days=60),
    )
    assert detector.detect(sar + usd + [refund], as_of=START + timedelta(days=70)) == []


def test_classify_interval():
    assert classify_interval(29.0) == SubscriptionFrequency.MONTHLY
    assert classify_interval(15.5) == SubscriptionFrequency.BIWEEKLY
    assert classify_interval(1.0) == SubscriptionFrequency.DAILY
    assert classify_interval(360.0) == SubscriptionFrequency.YEARLY
    assert classify_interval(50.0) is None


def test_identify_service():
    assert identify_service("stc", "STC") == ("STC", SubscriptionCategory.TELECOM)
    assert identify_service("youtube music", "YouTube Music") == ("YouTube Music", SubscriptionCategory.MUSIC)
    assert identify_service("daily news", "Daily News") == ("Daily News", SubscriptionCategory.NEWS)
    assert identify_service("acme", "ACME") == ("Acme", SubscriptionCategory.OTHER)
