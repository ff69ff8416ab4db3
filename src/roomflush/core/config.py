# src/roomflush/core/config.py
"""
Configuration schema and loading for roomflush runs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Self

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from roomflush.contracts.errors import ConfigError

if TYPE_CHECKING:
    from roomflush.contracts.protocols import MutationFn


class FlushRateLimit(BaseModel):
    """Global cap on persistence flushes across all documents.

    Example YAML:
        flush_rate_limit:
          requests_per_second: 20
          requests_per_minute: 600
    """

    model_config = {"frozen": True, "extra": "forbid"}

    requests_per_second: int = Field(gt=0, description="Maximum flushes per second")
    requests_per_minute: int | None = Field(default=None, gt=0, description="Maximum flushes per minute")
    poll_interval_ms: int = Field(default=10, gt=0, description="Wait between acquire attempts when limited")


class RunConfig(BaseModel):
    """Immutable configuration of one mutation run.

    Attributes:
        concurrency: Maximum number of documents mutated at once
        flush_interval_ms: Longest time a recorded write may stay unflushed
        timeout_seconds: Budget for the whole run, measured from its start
        deadline_at: Absolute, timezone-aware deadline for the whole run
        flush_rate_limit: Optional global flush rate cap

    Example YAML:
        run:
          concurrency: 20
          flush_interval_ms: 200
          timeout_seconds: 5
    """

    model_config = {"frozen": True, "extra": "forbid"}

    concurrency: int = Field(default=8, ge=1, description="Maximum simultaneous mutation tasks")
    flush_interval_ms: int = Field(default=200, ge=0, description="Maximum time pending writes sit unflushed")
    timeout_seconds: float | None = Field(default=None, gt=0, description="Duration bounding the whole run")
    deadline_at: datetime | None = Field(default=None, description="Absolute deadline for the whole run")
    flush_rate_limit: FlushRateLimit | None = Field(default=None, description="Global flush rate cap")

    @field_validator("deadline_at")
    @classmethod
    def _require_aware_deadline(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            raise ValueError("deadline_at must be timezone-aware")
        return v

    @model_validator(mode="after")
    def _validate_single_deadline(self) -> Self:
        if self.timeout_seconds is not None and self.deadline_at is not None:
            raise ValueError("timeout_seconds and deadline_at are mutually exclusive")
        return self

    @property
    def flush_interval_seconds(self) -> float:
        return self.flush_interval_ms / 1000


class StoreSettings(BaseModel):
    """Document store used by the CLI.

    The CLI runs against a JsonDirectoryStore rooted at ``path``. The filter
    fields select which documents are enumerated.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    path: str = Field(description="Directory holding <document_id>.json files")
    id_prefix: str | None = Field(default=None, description="Only documents whose id starts with this prefix")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadata equality filter")


class LoggingSettings(BaseModel):
    """Log output configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class RoomflushSettings(BaseModel):
    """Top-level settings file schema.

    Example YAML:
        mutator: "pixel_reveal.mutator:paint"
        store:
          path: ./rooms
          id_prefix: pixel-
        run:
          concurrency: 20
          flush_interval_ms: 200
          timeout_seconds: 5
    """

    model_config = {"frozen": True, "extra": "forbid"}

    mutator: str | None = Field(default=None, description="Import path of the mutation function (module:attr)")
    store: StoreSettings | None = None
    run: RunConfig = Field(default_factory=RunConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("mutator")
    @classmethod
    def _validate_import_path(cls, v: str | None) -> str | None:
        if v is None:
            return v
        module, sep, attr = v.partition(":")
        if not sep or not module or not attr:
            raise ValueError(f"mutator must look like 'package.module:function', got {v!r}")
        return v


def build_run_config(raw: RunConfig | Mapping[str, Any]) -> RunConfig:
    """Validate a raw mapping into a RunConfig.

    Raises:
        ConfigError: If validation fails
    """
    if isinstance(raw, RunConfig):
        return raw
    try:
        return RunConfig.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigError.from_validation_errors("Invalid run configuration:", e.errors()) from e


def load_settings(config_path: Path) -> RoomflushSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (ROOMFLUSH_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: ROOMFLUSH_RUN__CONCURRENCY for nested keys.

    Raises:
        ConfigError: If configuration fails validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="ROOMFLUSH",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; nested keys keep their case
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    try:
        return RoomflushSettings(**raw_config)
    except ValidationError as e:
        raise ConfigError.from_validation_errors(f"Invalid settings in {config_path}:", e.errors()) from e


def _lower_keys(value: Any) -> Any:
    """Lower-case nested dict keys coming from environment overrides.

    The store metadata filter is user data and keeps its keys unchanged.
    """
    if isinstance(value, dict):
        return {
            (k.lower() if isinstance(k, str) else k): (v if isinstance(k, str) and k.lower() == "metadata" else _lower_keys(v))
            for k, v in value.items()
        }
    return value


def import_mutator(path: str) -> MutationFn:
    """Resolve a ``module:attr`` import path to a mutation function.

    Raises:
        ConfigError: If the module or attribute cannot be found, or is not callable
    """
    module_name, _, attr = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import mutator module {module_name!r}: {e}") from e
    try:
        fn = getattr(module, attr)
    except AttributeError as e:
        raise ConfigError(f"Module {module_name!r} has no attribute {attr!r}") from e
    if not callable(fn):
        raise ConfigError(f"Mutator {path!r} is not callable")
    result: MutationFn = fn
    return result
