import os
from dataclasses import dataclass
from typing import Literal

from dari_insights.core import settings
from dari_insights.domain.money import DEFAULT_CURRENCY
from dari_insights.domain.tags import parse_tag_list
from dari_insights.logger import get_logger

ValueType = Literal["string", "int", "float"]

logger = get_logger(__name__)

_WEEKDAY_NAMES = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    description: str
    default: str
    category: str
    value_type: ValueType = "string"
    min_value: float | int | None = None
    max_value: float | int | None = None


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="DEFAULT_CURRENCY",
        label="Default Currency",
        description="ISO-4217 code used when a request does not specify one.",
        default=DEFAULT_CURRENCY,
        category="General",
    ),
    ConfigField(
        key="MIN_MATCH_CONFIDENCE",
        label="Minimum Match Confidence",
        description="Lowest keyword/pattern score (0-100) accepted as a categorization.",
        default="20",
        category="Categorization",
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="MERCHANT_SIMILARITY_THRESHOLD",
        label="Merchant Similarity Threshold",
        description="Similarity (0-1) a merchant name needs to reuse a learned mapping.",
        default="0.8",
        category="Merchants",
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="ANOMALY_HISTORY_MONTHS",
        label="Anomaly History Window",
        description="Months of history used as the baseline for anomaly detection.",
        default="3",
        category="Anomalies",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="DUPLICATE_WINDOW_MINUTES",
        label="Duplicate Window",
        description="Minutes within which equal transactions are grouped as duplicates.",
        default="10",
        category="Duplicates",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="SUBSCRIPTION_AMOUNT_TOLERANCE",
        label="Subscription Amount Tolerance",
        description="Relative drift (0-1) allowed between payments of one subscription.",
        default="0.1",
        category="Subscriptions",
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="REMINDER_DAYS_BEFORE",
        label="Reminder Lead Time",
        description="Days before renewal at which a reminder is raised.",
        default="3",
        category="Subscriptions",
        value_type="int",
        min_value=0,
    ),
    ConfigField(
        key="WEEKEND_DAYS",
        label="Weekend Days",
        description="Comma separated weekday names treated as weekend (e.g. FRI,SAT).",
        default="SAT,SUN",
        category="Anomalies",
    ),
)


@dataclass(frozen=True)
class EngineConfig:
    default_currency: str = DEFAULT_CURRENCY
    min_match_confidence: int = 20
    merchant_similarity_threshold: float = 0.8
    anomaly_history_months: int = 3
    duplicate_window_minutes: int = 10
    subscription_amount_tolerance: float = 0.1
    reminder_days_before: int = 3
    weekend_days: tuple[int, ...] = (5, 6)


def get_config_field(key: str) -> ConfigField:
    for field in CONFIG_FIELDS:
        if field.key == key:
            return field
    raise KeyError(key)


def validate_value(field: ConfigField, raw_value: str) -> tuple[str, str | None]:
    value = raw_value.strip()
    if not value:
        return "", None

    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.value_type == "int":
        try:
            parsed = int(value)
        except ValueError:
            return value, "Must be a whole number."
        if field.min_value is not None and parsed < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return str(parsed), None

    if field.value_type == "float":
        try:
            parsed_float = float(value)
        except ValueError:
            return value, "Must be a number."
        if field.min_value is not None and parsed_float < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed_float > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return str(parsed_float), None

    return value, None


def _resolve(key: str) -> str:
    field = get_config_field(key)
    raw = os.getenv(key)
    if raw is None:
        return field.default
    value, error = validate_value(field, raw)
    if error or not value:
        if error:
            logger.warning("[CONFIG] %s='%s' rejected (%s); using default %s.", key, raw, error, field.default)
        return field.default
    return value


def parse_weekend_days(raw: str) -> tuple[int, ...]:
    days: list[int] = []
    for name in parse_tag_list(raw):
        code = name.upper()[:3]
        if code not in _WEEKDAY_NAMES:
            logger.warning("[CONFIG] Unknown weekday '%s' in WEEKEND_DAYS ignored.", name)
            continue
        index = _WEEKDAY_NAMES.index(code)
        if index not in days:
            days.append(index)
    return tuple(sorted(days)) or (5, 6)


def load_engine_config() -> EngineConfig:
    return EngineConfig(
        default_currency=_resolve("DEFAULT_CURRENCY").upper(),
        min_match_confidence=int(_resolve("MIN_MATCH_CONFIDENCE")),
        merchant_similarity_threshold=float(_resolve("MERCHANT_SIMILARITY_THRESHOLD")),
        anomaly_history_months=int(_resolve("ANOMALY_HISTORY_MONTHS")),
        duplicate_window_minutes=int(_resolve("DUPLICATE_WINDOW_MINUTES")),
        subscription_amount_tolerance=float(_resolve("SUBSCRIPTION_AMOUNT_TOLERANCE")),
        reminder_days_before=int(_resolve("REMINDER_DAYS_BEFORE")),
        weekend_days=parse_weekend_days(_resolve("WEEKEND_DAYS")),
    )


def describe_config() -> list[dict[str, str | bool]]:
    """Current effective values, with sensitive ones masked, for diagnostics."""
    rows: list[dict[str, str | bool]] = []
    for field in CONFIG_FIELDS:
        value = _resolve(field.key)
        rows.append({
            "key": field.key,
            "label": field.label,
            "category": field.category,
            "value": settings.mask_env_value(field.key, value),
            "from_environment": settings.is_env_override(field.key),
        })
    return rows
