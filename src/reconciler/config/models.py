"""Pydantic models for configuration schema."""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from reconciler.utils.retry import RetryStrategy


class ProviderSettings(BaseModel):
    """Settings handed to every resource provider constructor."""

    project: str = Field(..., pattern="^[a-z][a-z0-9-]{4,28}[a-z0-9]$")
    region: str = Field("us-central1", min_length=1)

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate region format (e.g. us-central1, europe-west4)."""
        parts = v.split("-")
        if len(parts) != 2 or not parts[0].isalpha() or not parts[1][-1:].isdigit():
            raise ValueError(f"Invalid region: {v}. Expected a name like 'us-central1'")
        return v


class ExecutorSettings(BaseModel):
    """Plan executor settings."""

    max_workers: int = Field(4, ge=1, le=64, description="Concurrent provider calls per wave")


class RetrySettings(BaseModel):
    """Backoff settings for transient provider errors."""

    max_attempts: int = Field(5, ge=1, le=20)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(60.0, ge=0)
    exponential_base: float = Field(2.0, ge=1)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """Validate that the delay ceiling is not below the base delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self

    def to_strategy(self) -> RetryStrategy:
        """Build the retry strategy described by these settings."""
        return RetryStrategy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
        )


class StateSettings(BaseModel):
    """State store settings."""

    path: str = Field(".reconciler/state", min_length=1)
    lock_timeout: float = Field(30.0, gt=0)


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = Field("info", pattern="^(debug|info|warning|error)$")
    log_dir: Optional[str] = ".reconciler/logs"


class ReconcilerConfig(BaseModel):
    """Top-level configuration."""

    provider: ProviderSettings
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
