"""Engine settings loaded from the environment (``VEHICLE_TAX_*``)."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vehicle_tax.decimal_math import to_decimal
from vehicle_tax.exceptions import InvalidTaxCalculationError


class EngineSettings(BaseSettings):
    """Configuration for the calculation engine and its stores."""

    model_config = SettingsConfigDict(
        env_prefix="VEHICLE_TAX_",
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+pysqlite:///:memory:",
        description="SQLAlchemy URL for reference and audit tables",
    )
    engine_version: str = Field(default="2.0.0", description="Recorded on every audit entry")

    # Money and rate bounds stay strings so they never pass through float
    max_reasonable_rate: str = Field(default="0.15")
    breakdown_tolerance: str = Field(default="0.01")

    reference_cache_ttl_seconds: float = Field(default=3600, ge=0)
    reference_cache_max_entries: int = Field(default=1024, ge=1)
    stale_jurisdiction_days: int = Field(default=90, ge=1)

    log_level: str = Field(default="INFO")

    @field_validator("max_reasonable_rate", "breakdown_tolerance")
    @classmethod
    def _decimal_literal(cls, v: str) -> str:
        try:
            to_decimal(v, "setting")
        except InvalidTaxCalculationError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> EngineSettings:
    """Process-wide settings instance."""
    return EngineSettings()
