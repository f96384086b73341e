"""Configuration loading for vmfleet.

Reads a YAML file (default: ``vmfleet.yaml`` in the working directory) into
pydantic models. Every section is optional; a missing file yields defaults.
A handful of environment variables override the file for container deployments.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from vmfleet.backoff import (
    DEFAULT_INITIAL_INTERVAL,
    DEFAULT_MAX_ELAPSED_TIME,
    DEFAULT_MAX_INTERVAL,
    DEFAULT_MULTIPLIER,
    DEFAULT_RANDOMIZATION_FACTOR,
    ExponentialBackoff,
)

logger = logging.getLogger(__name__)


class RunnerConfig(BaseModel):
    name: str = "vmfleet"


class LiteEngineConfig(BaseModel):
    """How to reach the in-guest agent."""

    port: int = 9079
    enable_mock: bool = False
    mock_step_timeout_secs: int = 120
    request_timeout: float = 30.0  # seconds, per HTTP call


class DestroyConfig(BaseModel):
    """Retry policy and timeouts for the decommissioning workflow."""

    max_elapsed_time: float = DEFAULT_MAX_ELAPSED_TIME  # seconds (10 minutes)
    initial_interval: float = DEFAULT_INITIAL_INTERVAL
    multiplier: float = DEFAULT_MULTIPLIER
    max_interval: float = DEFAULT_MAX_INTERVAL
    randomization_factor: float = DEFAULT_RANDOMIZATION_FACTOR
    guest_cleanup_timeout: float = 60.0  # seconds, in-guest cleanup is best-effort

    @field_validator("multiplier")
    @classmethod
    def _growing(cls, v: float) -> float:
        if v < 1:
            raise ValueError(f"multiplier must be >= 1, got {v}")
        return v

    @field_validator("initial_interval", "guest_cleanup_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("randomization_factor")
    @classmethod
    def _factor_range(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError(f"randomization_factor must be in [0, 1), got {v}")
        return v

    def new_backoff(self) -> ExponentialBackoff:
        """Build a fresh backoff generator for one destroy request."""
        return ExponentialBackoff(
            initial_interval=self.initial_interval,
            multiplier=self.multiplier,
            max_interval=self.max_interval,
            randomization_factor=self.randomization_factor,
            max_elapsed_time=self.max_elapsed_time,
        )


class DatabaseConfig(BaseModel):
    path: str = "vmfleet.db"  # relative paths resolve against VMFLEET_DATA_DIR


class FleetConfig(BaseModel):
    """Top-level vmfleet configuration (matches vmfleet.yaml)."""

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    lite_engine: LiteEngineConfig = Field(default_factory=LiteEngineConfig)
    destroy: DestroyConfig = Field(default_factory=DestroyConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    def database_path(self) -> Path:
        path = Path(self.database.path)
        if path.is_absolute():
            return path
        data_dir = os.environ.get("VMFLEET_DATA_DIR", "").strip()
        return Path(data_dir) / path if data_dir else path


def load_config(config_path: Path | None = None) -> FleetConfig:
    """Load vmfleet configuration.

    Args:
        config_path: YAML file to read. ``None`` or a missing file means defaults.

    Returns:
        Validated FleetConfig with environment overrides applied.

    Raises:
        ValueError: If config validation fails.
    """
    raw: dict = {}
    if config_path is not None and config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    elif config_path is not None:
        logger.warning("Config file %s not found, using defaults", config_path)

    config = FleetConfig(**raw)

    runner_name = os.environ.get("VMFLEET_RUNNER_NAME")
    if runner_name:
        config.runner.name = runner_name

    mock = os.environ.get("VMFLEET_LITE_ENGINE_MOCK")
    if mock is not None:
        config.lite_engine.enable_mock = mock.lower() in ("1", "true", "yes")

    logger.info(
        "Loaded vmfleet config: runner=%s, destroy.max_elapsed_time=%ss",
        config.runner.name,
        config.destroy.max_elapsed_time,
    )
    return config
