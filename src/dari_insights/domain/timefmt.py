from datetime import datetime, timedelta, timezone


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"


def subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, _days_in_month(year, month))
    return value.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - timedelta(days=1)).day


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400


def to_naive_utc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC and stripped of their offset; naive ones pass through."""
    if value.tzinfo is None or value.utcoffset() is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
