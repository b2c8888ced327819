import pytest

from dari_insights.core import settings
from dari_insights.core.configuration import (
    EngineConfig,
    get_config_field,
    load_engine_config,
    parse_weekend_days,
    validate_value,
)


def test_read_config_file(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "# engine settings\n"
        "LOG_LEVEL: DEBUG  # noisy\n"
        "WEEKEND_DAYS: 'FRI,SAT'\n"
        "HOST: \"0.0.0.0#not-a-comment\"\n"
        "EMPTY:\n"
        "not a pair\n",
        encoding="utf-8",
    )

    values = settings.read_config_file(str(config_file))

    assert values == {
        "LOG_LEVEL": "DEBUG",
        "WEEKEND_DAYS": "FRI,SAT",
        "HOST": "0.0.0.0#not-a-comment",
    }


def test_read_missing_config_file(tmp_path):
    assert settings.read_config_file(str(tmp_path / "missing.yaml")) == {}
    assert settings.read_config_file(None) == {}


@pytest.mark.parametrize(
    ("name", "value", "expected"),
    [
        ("LOG_LEVEL", "INFO", "INFO"),
        ("API_TOKEN", "abcdef123456", "ab...56"),
        ("DB_PASSWORD", "abc", "****"),
        ("HEADER", "Bearer xyz123", "Be...23"),
        ("MULTILINE", "a\nb", "a\\nb"),
    ],
)
def test_mask_env_value(name, value, expected):
    assert settings.mask_env_value(name, value) == expected


def test_get_env_int(monkeypatch):
    monkeypatch.delenv("PORT", raising=False)
    assert settings.get_env_int("PORT", 8000) == 8000

    monkeypatch.setenv("PORT", "9000")
    assert settings.get_env_int("PORT", 8000, min_value=1) == 9000

    monkeypatch.setenv("PORT", "abc")
    assert settings.get_env_int("PORT", 8000) == 8000

    monkeypatch.setenv("PORT", "0")
    assert settings.get_env_int("PORT", 8000, min_value=1) == 8000


def test_get_env_float(monkeypatch):
    monkeypatch.setenv("MERCHANT_SIMILARITY_THRESHOLD", "0.65")
    assert settings.get_env_float("MERCHANT_SIMILARITY_THRESHOLD", 0.8, 0.0, 1.0) == 0.65

    monkeypatch.setenv("MERCHANT_SIMILARITY_THRESHOLD", "1.5")
    assert settings.get_env_float("MERCHANT_SIMILARITY_THRESHOLD", 0.8, 0.0, 1.0) == 0.8

    monkeypatch.setenv("MERCHANT_SIMILARITY_THRESHOLD", "high")
    assert settings.get_env_float("MERCHANT_SIMILARITY_THRESHOLD", 0.8) == 0.8


@pytest.mark.parametrize(
    ("key", "raw", "expected"),
    [
        ("MIN_MATCH_CONFIDENCE", " 35 ", ("35", None)),
        ("MIN_MATCH_CONFIDENCE", "150", ("150", "Must be at most 100.")),
        ("MIN_MATCH_CONFIDENCE", "3.5", ("3.5", "Must be a whole number.")),
        ("MERCHANT_SIMILARITY_THRESHOLD", "0.9", ("0.9", None)),
        ("MERCHANT_SIMILARITY_THRESHOLD", "-1", ("-1", "Must be at least 0.0.")),
        ("DEFAULT_CURRENCY", "", ("", None)),
        ("DEFAULT_CURRENCY", "SAR\nUSD", ("SAR\nUSD", "Value must be a single line.")),
    ],
)
def test_validate_value(key, raw, expected):
    assert validate_value(get_config_field(key), raw) == expected


def test_unknown_config_field():
    with pytest.raises(KeyError):
        get_config_field("NOPE")


def test_parse_weekend_days():
    assert parse_weekend_days("FRI,SAT") == (4, 5)
    assert parse_weekend_days("saturday, sunday, SAT") == (5, 6)
    assert parse_weekend_days("FUNDAY") == (5, 6)
    assert parse_weekend_days("") == (5, 6)


def test_load_engine_config_defaults(monkeypatch):
    for field in (
        "DEFAULT_CURRENCY",
        "MIN_MATCH_CONFIDENCE",
        "MERCHANT_SIMILARITY_THRESHOLD",
        "ANOMALY_HISTORY_MONTHS",
        "DUPLICATE_WINDOW_MINUTES",
        "SUBSCRIPTION_AMOUNT_TOLERANCE",
        "REMINDER_DAYS_BEFORE",
        "WEEKEND_DAYS",
    ):
        monkeypatch.delenv(field, raising=False)

    assert load_engine_config() == EngineConfig()


def test_load_engine_config_from_environment(monkeypatch):
    monkeypatch.setenv("DEFAULT_CURRENCY", "usd")
    monkeypatch.setenv("DUPLICATE_WINDOW_MINUTES", "5")
    monkeypatch.setenv("WEEKEND_DAYS", "FRI,SAT")
    monkeypatch.setenv("MIN_MATCH_CONFIDENCE", "not-a-number")

    config = load_engine_config()

    assert config.default_currency == "USD"
    assert config.duplicate_window_minutes == 5
    assert config.weekend_days == (4, 5)
    assert config.min_match_confidence == 20
