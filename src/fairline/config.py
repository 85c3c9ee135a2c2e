"""Configuration management for fairline."""

from enum import Enum
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class DevigMethod(str, Enum):
    """Margin removal policies."""

    PROPORTIONAL = "proportional"
    SHIN = "shin"


class FairlineSettings(BaseSettings):
    """Process level settings for fairline."""

    # Margin removal
    devig_method: DevigMethod = Field(
        default=DevigMethod.SHIN,
        description="De-vig policy: 'shin' or 'proportional'",
        alias="FAIRLINE_DEVIG_METHOD",
    )

    # Fair price output
    probability_epsilon: float = Field(
        default=1e-6,
        description="Probabilities are clamped to [epsilon, 1 - epsilon] before pricing",
        alias="FAIRLINE_PROBABILITY_EPSILON",
    )

    sentinel_price: float = Field(
        default=1000.0,
        description="Fair price reported for outcomes with negligible probability",
        alias="FAIRLINE_SENTINEL_PRICE",
    )

    # Sport profiles
    profiles_path: Path | None = Field(
        default=None,
        description="Optional YAML file layered over the built-in sport profiles",
        alias="FAIRLINE_PROFILES_PATH",
    )

    # Logging
    log_level: str = Field(
        default="WARNING",
        description="Default level applied by fairline.logging.configure_logging",
        alias="FAIRLINE_LOG_LEVEL",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("probability_epsilon")
    @classmethod
    def _check_epsilon(cls, value: float) -> float:
        if not 0.0 < value < 0.5:
            raise ValueError("probability_epsilon must be within (0, 0.5)")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("sentinel_price")
    @classmethod
    def _check_sentinel(cls, value: float) -> float:
        if value <= 1.0:
            raise ValueError("sentinel_price must exceed 1.0")
        return value


def get_settings(**overrides) -> FairlineSettings:
    """Build a fresh settings instance from the environment and overrides."""
    try:
        return FairlineSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid fairline settings:\n{exc}") from exc
