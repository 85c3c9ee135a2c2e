"""Test process settings and logging configuration."""

import logging

import pytest
from pydantic import ValidationError

from fairline.config import DevigMethod, FairlineSettings, get_settings
from fairline.errors import ConfigurationError
from fairline.logging import configure_logging


def test_settings_defaults():
    """Test default settings values."""
    settings = FairlineSettings()

    assert settings.devig_method == DevigMethod.SHIN
    assert settings.probability_epsilon == 1e-6
    assert settings.sentinel_price == 1000.0
    assert settings.profiles_path is None
    assert settings.log_level == "WARNING"


def test_settings_from_env(monkeypatch):
    """Test settings from environment variables."""
    monkeypatch.setenv("FAIRLINE_DEVIG_METHOD", "proportional")
    monkeypatch.setenv("FAIRLINE_SENTINEL_PRICE", "250")
    monkeypatch.setenv("FAIRLINE_PROBABILITY_EPSILON", "0.0001")

    settings = get_settings()

    assert settings.devig_method == DevigMethod.PROPORTIONAL
    assert settings.sentinel_price == 250.0
    assert settings.probability_epsilon == 1e-4


def test_settings_from_dotenv(tmp_path, monkeypatch):
    """Test settings read from a .env file in the working directory."""
    (tmp_path / ".env").write_text("FAIRLINE_SENTINEL_PRICE=333\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert get_settings().sentinel_price == 333.0


def test_get_settings_returns_fresh_instances():
    """Test that every call builds its own settings object."""
    first = get_settings()
    second = get_settings(sentinel_price=50.0)

    assert first is not second
    assert first.sentinel_price == 1000.0
    assert second.sentinel_price == 50.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"probability_epsilon": 0.7},
        {"probability_epsilon": 0.0},
        {"sentinel_price": 1.0},
        {"devig_method": "power"},
    ],
)
def test_invalid_settings(overrides):
    """Test that invalid values raise ConfigurationError."""
    with pytest.raises(ConfigurationError, match="Invalid fairline settings"):
        get_settings(**overrides)


def test_settings_are_frozen():
    """Test that settings cannot be mutated after construction."""
    settings = get_settings()

    with pytest.raises(ValidationError):
        settings.sentinel_price = 10.0


def test_configure_logging(monkeypatch):
    """Test that configure_logging forwards level, format and handlers."""
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    handler = logging.NullHandler()

    configure_logging("debug", handlers=[handler])

    assert captured["level"] == logging.DEBUG
    assert captured["format"] == "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    assert captured["handlers"] == [handler]


def test_configure_logging_default_handlers(monkeypatch):
    """Test that no handlers are passed through when none are given."""
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    configure_logging(logging.WARNING)

    assert captured["level"] == logging.WARNING
    assert captured["handlers"] is None


def test_configure_logging_reads_the_level_setting(monkeypatch):
    """Test that the FAIRLINE_LOG_LEVEL setting is the default level."""
    captured = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    monkeypatch.setenv("FAIRLINE_LOG_LEVEL", "info")

    configure_logging()

    assert captured["level"] == logging.INFO


def test_invalid_log_level():
    """Test that unknown log levels are rejected."""
    with pytest.raises(ConfigurationError, match="Unknown log level"):
        get_settings(FAIRLINE_LOG_LEVEL="chatty")
