from datetime import datetime, timedelta, timezone

import pytest

from dari_insights.domain.money import Money
from dari_insights.domain.result import Failure, Success, unwrap
from dari_insights.domain.statistics import coefficient_of_variation, mean_and_std, percentage_change, z_score
from dari_insights.domain.tags import normalize_tags, parse_tag_list, union_tags
from dari_insights.domain.timefmt import days_between, format_duration, month_key, subtract_months, to_naive_utc
from dari_insights.errors import NotFoundError
from dari_insights.models import Transaction


def test_mean_and_std_is_population():
    assert mean_and_std([2, 4, 4, 4, 5, 5, 7, 9]) == (5.0, 2.0)
    assert mean_and_std([]) == (0.0, 0.0)


def test_z_score_and_variation():
    assert z_score(9, 5, 2) == 2.0
    assert z_score(9, 5, 0) == 0.0
    assert coefficient_of_variation([10, 10, 10]) == 0.0
    assert coefficient_of_variation([0, 0]) == 0.0


def test_percentage_change_zero_baseline():
    assert percentage_change(150, 100) == 50.0
    assert percentage_change(50, -100) == 150.0
    assert percentage_change(150, 0) == 0.0


def test_subtract_months_clamps_day():
    assert subtract_months(datetime(2024, 5, 31, 10, 30), 3) == datetime(2024, 2, 29, 10, 30)
    assert subtract_months(datetime(2024, 1, 15), 1) == datetime(2023, 12, 15)
    assert subtract_months(datetime(2023, 3, 31), 13) == datetime(2022, 2, 28)


def test_time_helpers():
    assert month_key(datetime(2024, 3, 9)) == "2024-03"
    assert days_between(datetime(2024, 1, 1), datetime(2024, 1, 2, 12)) == 1.5
    assert format_duration(0) == "0 ms"
    assert format_duration(0.25) == "250.0 ms"
    assert format_duration(90) == "1.50 min"


def test_tags():
    assert parse_tag_list("food, Food ,  travel,") == ["food", "travel"]
    assert normalize_tags(None) == []
    assert normalize_tags(42) == []
    assert union_tags(["a", "b"], {"B", "c"}) >= {"a", "c"}
    assert len(union_tags(["a", "b"], ["B", "c"])) == 3


def test_result_unwrap():
    assert unwrap(Success(3)) == 3
    failure = Failure(NotFoundError("Transaction", "t1"))
    assert not failure.ok
    assert failure.message == "Transaction not found: t1"
    with pytest.raises(NotFoundError):
        unwrap(failure)


def test_to_naive_utc():
    riyadh = timezone(timedelta(hours=3))
    assert to_naive_utc(datetime(2024, 2, 4, 11, 0, tzinfo=riyadh)) == datetime(2024, 2, 4, 8, 0)
    assert to_naive_utc(datetime(2024, 2, 4, 11, 0)) == datetime(2024, 2, 4, 11, 0)


def test_transaction_date_is_converted_to_naive_utc():
    transaction = Transaction(
        id="t1",
        account_id="acc-1",
        amount=Money.of("-10"),
        date="2024-05-01T10:00:00Z",
    )
    assert transaction.date == datetime(2024, 5, 1, 10, 0)
    assert transaction.date.tzinfo is None
