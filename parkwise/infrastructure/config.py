# File: parkwise/infrastructure/config.py
"""
Configuration models and loading utilities

Every tunable of the engine lives here with its default. The settings tree is
validated with pydantic and converts itself into the domain's value objects
(ScoringWeights, PricingPolicy) so the domain never sees configuration types.
"""

import os
import re
from pathlib import Path
from decimal import Decimal
from typing import Dict, Optional, Union, Any

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError

from ..domain.models import RateType, VehicleClass
from ..domain.strategies import (
    ScoringWeights, PricingPolicy,
    DEFAULT_BASE_RATES, DEFAULT_FEATURE_PREMIUMS,
    DEFAULT_RATE_MULTIPLIERS, DEFAULT_RATE_CAPS_HOURS
)


DATABASE_URL_ENV = "PARKWISE_DATABASE_URL"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def resolve_env_refs(value: Any) -> Any:
    """Resolve ${VAR_NAME} references in strings, recursively through containers."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: resolve_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_refs(v) for v in value]
    return value


class DatabaseConfig(BaseModel):
    """Store configuration."""

    url: str = "sqlite:///parkwise.db"  # "memory" selects the in-memory store
    echo: bool = False


class AllocationConfig(BaseModel):
    """Candidate query and scoring configuration."""

    candidate_limit: int = Field(default=10, ge=1)
    max_claim_rounds: int = Field(default=3, ge=1)  # Requeries after every candidate lost a race
    level_fallback: bool = True  # Retry without the level filter when the preferred floor is full
    strict_vehicle_classes: bool = False
    level_penalty: int = ScoringWeights.level_penalty
    preferred_level_bonus: int = ScoringWeights.preferred_level_bonus
    exact_class_bonus: int = ScoringWeights.exact_class_bonus
    oversized_waste_penalty: int = ScoringWeights.oversized_waste_penalty
    first_section: str = ScoringWeights.first_section
    first_section_bonus: int = ScoringWeights.first_section_bonus
    charging_bonus: int = ScoringWeights.charging_bonus
    handicap_penalty: int = ScoringWeights.handicap_penalty

    def to_weights(self) -> ScoringWeights:
        return ScoringWeights(
            level_penalty=self.level_penalty,
            preferred_level_bonus=self.preferred_level_bonus,
            exact_class_bonus=self.exact_class_bonus,
            oversized_waste_penalty=self.oversized_waste_penalty,
            first_section=self.first_section,
            first_section_bonus=self.first_section_bonus,
            charging_bonus=self.charging_bonus,
            handicap_penalty=self.handicap_penalty,
        )


class BillingConfig(BaseModel):
    """Tariff configuration."""

    grace_period_minutes: int = Field(default=PricingPolicy.grace_period_minutes, ge=0)
    base_rates: Dict[VehicleClass, Decimal] = Field(default_factory=lambda: dict(DEFAULT_BASE_RATES))
    feature_premiums: Dict[str, Decimal] = Field(default_factory=lambda: dict(DEFAULT_FEATURE_PREMIUMS))
    rate_multipliers: Dict[RateType, Decimal] = Field(default_factory=lambda: dict(DEFAULT_RATE_MULTIPLIERS))
    rate_caps_hours: Dict[RateType, int] = Field(default_factory=lambda: dict(DEFAULT_RATE_CAPS_HOURS))
    currency: str = PricingPolicy.currency

    @field_validator("base_rates", "feature_premiums", "rate_multipliers")
    @classmethod
    def non_negative(cls, v: Dict[Any, Decimal]) -> Dict[Any, Decimal]:
        for key, amount in v.items():
            if amount < 0:
                raise ValueError(f"{key} must not be negative")
        return v

    @field_validator("base_rates")
    @classmethod
    def fill_missing_rates(cls, v: Dict[VehicleClass, Decimal]) -> Dict[VehicleClass, Decimal]:
        """Classes left out of the file keep their default rate."""
        return {**DEFAULT_BASE_RATES, **v}

    def to_policy(self) -> PricingPolicy:
        return PricingPolicy(
            grace_period_minutes=self.grace_period_minutes,
            feature_premiums=dict(self.feature_premiums),
            rate_multipliers=dict(self.rate_multipliers),
            rate_caps_hours=dict(self.rate_caps_hours),
            base_rates=dict(self.base_rates),
            currency=self.currency,
        )


class EventsConfig(BaseModel):
    """Domain event publishing configuration."""

    backend: str = "memory"  # memory, redis or none
    redis_url: str = "redis://localhost:6379/0"
    topic: str = "parking_events"

    @field_validator("backend")
    @classmethod
    def known_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis", "none"):
            raise ValueError(f"Unknown events backend: {v}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None


class ParkwiseSettings(BaseModel):
    """Main application configuration."""

    database: DatabaseConfig = DatabaseConfig()
    allocation: AllocationConfig = AllocationConfig()
    billing: BillingConfig = BillingConfig()
    events: EventsConfig = EventsConfig()
    logging: LoggingConfig = LoggingConfig()

    def with_env_overrides(self) -> "ParkwiseSettings":
        """Apply PARKWISE_DATABASE_URL on top of the loaded values."""
        url = os.environ.get(DATABASE_URL_ENV)
        if not url:
            return self
        return self.model_copy(update={"database": self.database.model_copy(update={"url": url})})


def load_settings(path: Optional[Union[str, Path]] = None) -> ParkwiseSettings:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the configuration file; None gives the defaults

    Returns:
        Validated ParkwiseSettings instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    if path is None:
        return ParkwiseSettings().with_env_overrides()

    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    try:
        settings = ParkwiseSettings(**resolve_env_refs(data))
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    return settings.with_env_overrides()


def get_config_path() -> Path:
    """Get the default configuration file path."""
    local_config = Path("config/parkwise.yaml")
    if local_config.exists():
        return local_config

    env_config = os.environ.get("PARKWISE_CONFIG")
    if env_config:
        return Path(env_config)

    return local_config
