"""Configuration loading for callspan.

Sources, lowest to highest priority:

1. a TOML file (explicit path, or ``callspan.toml`` in the working directory,
   then in the home directory);
2. ``CALLSPAN_*`` environment variables;
3. explicit overrides passed to :func:`load_config` / ``init()``.

Overrides may be nested by section (``{"tracing": {"sample_rate": 0.5}}``) or
flat (``{"sample_rate": 0.5}``); flat keys use the same names as the
environment variables, lowercased and without the prefix.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from callspan.errors import ConfigError
from callspan.processors.sampling_policy import DEFAULT_LIVENESS_OPERATIONS, SamplingPolicy

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "callspan.toml"
ENV_PREFIX = "CALLSPAN_"

DEFAULT_EXCLUDE_URLS = [
    "/actuator/health/**",
    "/actuator/metrics/**",
    "/actuator/prometheus/**",
]
DEFAULT_EXCLUDE_OPERATIONS = ["PING", "SELECT 1", "redis.ping", "mysql.ping"]
DEFAULT_EXCLUDE_SPAN_NAMES = ["jedis.ping", "lettuce.ping", "actuator.health"]


class TracingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    service_name: str = "callspan-service"
    service_version: str = "1.0.0"
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("service_name must be non-empty")
        return v


class FilterConfig(BaseModel):
    """Span exclusion rules; validated by compiling them."""

    model_config = ConfigDict(extra="forbid")

    exclude_urls: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_URLS))
    exclude_operations: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_OPERATIONS))
    exclude_span_names: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_SPAN_NAMES))
    liveness_operations: List[str] = Field(default_factory=lambda: list(DEFAULT_LIVENESS_OPERATIONS))

    @model_validator(mode="after")
    def validate_rules(self) -> "FilterConfig":
        try:
            SamplingPolicy.from_patterns(
                exclude_urls=self.exclude_urls,
                exclude_operations=self.exclude_operations,
                exclude_span_names=self.exclude_span_names,
                liveness_operations=self.liveness_operations,
            )
        except ConfigError as exc:
            raise ValueError(str(exc)) from exc
        return self


class ExportConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_queue_size: int = Field(default=2048, gt=0)
    max_export_batch_size: int = Field(default=512, gt=0)
    schedule_delay_millis: int = Field(default=5000, gt=0)
    export_timeout_millis: int = Field(default=30000, gt=0)
    max_export_retries: int = Field(default=3, ge=0)
    retry_backoff_millis: int = Field(default=100, ge=0)
    overflow_policy: Literal["drop_oldest", "drop_newest", "block"] = "drop_oldest"
    max_block_ms: int = Field(default=100, ge=0)

    @model_validator(mode="after")
    def validate_batch_size(self) -> "ExportConfig":
        if self.max_export_batch_size > self.max_queue_size:
            raise ValueError("max_export_batch_size must not exceed max_queue_size")
        return self


class ExportersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    use_otlp: bool = True
    enable_console: bool = False


class HttpConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    capture_request_headers: List[str] = Field(default_factory=list)
    capture_response_headers: List[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    debug: bool = False


class CallspanConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tracing: TracingConfig = Field(default_factory=TracingConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Flat key -> (section, field). Shared by environment variables and flat overrides.
FLAT_KEYS: Dict[str, Tuple[str, str]] = {
    "enabled": ("tracing", "enabled"),
    "service_name": ("tracing", "service_name"),
    "service_version": ("tracing", "service_version"),
    "endpoint": ("tracing", "endpoint"),
    "api_key": ("tracing", "api_key"),
    "sample_rate": ("tracing", "sample_rate"),
    "exclude_urls": ("filter", "exclude_urls"),
    "exclude_operations": ("filter", "exclude_operations"),
    "exclude_span_names": ("filter", "exclude_span_names"),
    "liveness_operations": ("filter", "liveness_operations"),
    "max_queue_size": ("export", "max_queue_size"),
    "max_export_batch_size": ("export", "max_export_batch_size"),
    "schedule_delay_millis": ("export", "schedule_delay_millis"),
    "export_timeout_millis": ("export", "export_timeout_millis"),
    "max_export_retries": ("export", "max_export_retries"),
    "retry_backoff_millis": ("export", "retry_backoff_millis"),
    "overflow_policy": ("export", "overflow_policy"),
    "max_block_ms": ("export", "max_block_ms"),
    "use_otlp": ("exporters", "use_otlp"),
    "enable_console": ("exporters", "enable_console"),
    "capture_request_headers": ("http", "capture_request_headers"),
    "capture_response_headers": ("http", "capture_response_headers"),
    "debug": ("logging", "debug"),
}

_LIST_KEYS = {
    "exclude_urls",
    "exclude_operations",
    "exclude_span_names",
    "liveness_operations",
    "capture_request_headers",
    "capture_response_headers",
}


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load a TOML config file.

    Returns an empty dict when the file does not exist; raises ConfigError
    when it cannot be parsed.
    """
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError("Invalid TOML in config file", {"path": str(config_path), "error": str(exc)}) from exc
    except OSError as exc:
        raise ConfigError("Cannot read config file", {"path": str(config_path), "error": str(exc)}) from exc


def find_config_file() -> Optional[str]:
    """Return the first ``callspan.toml`` found in the working or home directory."""
    for directory in (Path.cwd(), Path.home()):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return str(candidate)
    return None


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config_from_env(flat: bool = False) -> Dict[str, Any]:
    """
    Read ``CALLSPAN_*`` environment variables.

    Values stay strings (pydantic coerces them) except list settings, which
    are comma-separated. With ``flat`` the result is keyed by flat key;
    otherwise it is nested by section.
    """
    values: Dict[str, Any] = {}
    for key in FLAT_KEYS:
        raw = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        values[key] = _split_list(raw) if key in _LIST_KEYS else raw
    if flat:
        return values
    return _nest(values)


def _nest(flat_values: Mapping[str, Any]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for key, value in flat_values.items():
        section, name = FLAT_KEYS[key]
        nested.setdefault(section, {})[name] = value
    return nested


def _normalize_overrides(overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Accept nested and flat override keys; None values are ignored."""
    nested: Dict[str, Any] = {}
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in CallspanConfig.model_fields and isinstance(value, Mapping):
            section = nested.setdefault(key, {})
            section.update({k: v for k, v in value.items() if v is not None})
        elif key in FLAT_KEYS:
            section, name = FLAT_KEYS[key]
            nested.setdefault(section, {})[name] = value
        else:
            raise ConfigError("Unknown configuration key", {"key": key})
    return nested


def _merge(base: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> CallspanConfig:
    """
    Load configuration with priority explicit overrides > env > file.

    Raises ConfigError when the merged configuration is invalid.
    """
    path = config_file or find_config_file()
    file_values = load_toml_config(path) if path else {}
    if path and file_values:
        logger.debug("Loaded config file %s", path)

    merged = _merge(file_values, load_config_from_env())
    merged = _merge(merged, _normalize_overrides(overrides))

    try:
        return CallspanConfig.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigError("Invalid configuration", {"errors": exc.errors(include_url=False)}) from exc


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Tuple[bool, str, Optional[CallspanConfig]]:
    """Validate configuration without raising: ``(is_valid, message, config)``."""
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        return False, str(exc), None
    return True, "Configuration is valid", config
