"""Cache configuration: validation, YAML loading and environment overrides.

Typical usage::

    from memocache.config import load_config
    cfg = load_config()                      # defaults + env overrides
    cfg = load_config("configs/cache.yaml")  # explicit file

The returned :class:`CacheConfig` is a frozen pydantic model; changing
settings means validating a new one (see :func:`merge_config`).
"""

import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from .models import EvictionPolicy

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a configuration value fails validation.

    Attributes:
        errors: pydantic error dicts, one per invalid field (may be empty)
    """

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


# ------------------------------------------------------------------
# Model
# ------------------------------------------------------------------


class CacheConfig(BaseModel):
    """Engine settings.

    - max_size: maximum number of stored entries
    - default_ttl: seconds until expiry, None = never expires
    - eviction_policy: LRU, FIFO or TTL
    - maintenance_interval: seconds between background sweeps, None = off
    - copy_values: deep-copy values into and out of the store
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_size: StrictInt = Field(default=100, gt=0)
    default_ttl: Optional[float] = Field(default=3600.0, ge=0)
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    maintenance_interval: Optional[float] = Field(default=5.0, gt=0)
    copy_values: bool = True

    @field_validator("default_ttl", "maintenance_interval", mode="before")
    @classmethod
    def _reject_non_numeric(cls, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number of seconds or None")
        if math.isnan(value):
            raise ValueError("must not be NaN")
        return value

    @field_validator("eviction_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


DEFAULT_CONFIG = CacheConfig()


def merge_config(base: CacheConfig, changes: Mapping[str, Any]) -> CacheConfig:
    """Validate *changes* layered on *base* and return the new config.

    Either every supplied field is applied or none is.

    Raises:
        ConfigurationError: If any supplied field is unknown or invalid.
    """
    merged = base.model_dump()
    merged.update(changes)
    try:
        return CacheConfig.model_validate(merged)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "?" for err in exc.errors())
        raise ConfigurationError(f"Invalid cache configuration ({fields}): {exc}", exc.errors()) from exc


# ------------------------------------------------------------------
# Environment helpers
# ------------------------------------------------------------------


def get_env_bool(key: str, default: bool) -> bool:
    """Read a flag; true/1/yes/on (any case) are true, anything else false."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: Optional[int]) -> Optional[int]:
    """Get integer from environment variable, falling back on bad input."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {key}={value!r}")
        return default


def get_env_float(key: str, default: Optional[float]) -> Optional[float]:
    """Get float from environment variable, falling back on bad input."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={value!r}")
        return default


def get_env_seconds(key: str, default: Optional[float]) -> Optional[float]:
    """Get a duration in seconds where ``none``/``off`` or <= 0 mean disabled."""
    value = os.getenv(key)
    if value is None:
        return default
    if value.strip().lower() in ("none", "off", "never", ""):
        return None
    seconds = get_env_float(key, default)
    if seconds is not None and seconds <= 0:
        return None
    return seconds


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to a raw config dict.

    Supported environment variables:
    - CACHE_MAX_ENTRIES: Maximum cache entries
    - CACHE_TTL_SECONDS: Default TTL in seconds (none/off or <=0: no expiry)
    - CACHE_EVICTION_POLICY: LRU, FIFO or TTL
    - CACHE_MAINTENANCE_INTERVAL: Sweep interval in seconds (none/off: disabled)
    - CACHE_COPY_VALUES: Copy values in/out of the store (true/false)

    Args:
        config: Base configuration dict

    Returns:
        Configuration with env var overrides applied
    """
    # Create a copy to avoid mutating original
    config = dict(config)

    max_size = get_env_int("CACHE_MAX_ENTRIES", config.get("max_size"))
    if max_size is not None:
        config["max_size"] = max_size

    if "CACHE_TTL_SECONDS" in os.environ:
        config["default_ttl"] = get_env_seconds("CACHE_TTL_SECONDS", config.get("default_ttl"))

    if os.getenv("CACHE_EVICTION_POLICY"):
        config["eviction_policy"] = os.getenv("CACHE_EVICTION_POLICY")

    if "CACHE_MAINTENANCE_INTERVAL" in os.environ:
        config["maintenance_interval"] = get_env_seconds(
            "CACHE_MAINTENANCE_INTERVAL", config.get("maintenance_interval")
        )

    if "CACHE_COPY_VALUES" in os.environ:
        config["copy_values"] = get_env_bool("CACHE_COPY_VALUES", config.get("copy_values", True))

    return config


# ------------------------------------------------------------------
# Loader
# ------------------------------------------------------------------


def load_config(path: Optional[str] = None) -> CacheConfig:
    """Load config from *path* (YAML) and apply environment overrides.

    The YAML document is either a flat mapping of config fields or a mapping
    with a top-level ``cache:`` section. Without *path*, defaults are used.

    Raises:
        FileNotFoundError: If an explicit *path* does not exist.
        ConfigurationError: If the YAML is invalid or a value fails validation.
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        raw = _parse(p)

    return merge_config(DEFAULT_CONFIG, apply_env_overrides(raw))


def _parse(path: Path) -> Dict[str, Any]:
    """Parse a YAML file into a raw config dict."""
    text = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected mapping at top level in {path}")

    section = data.get("cache", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected mapping under 'cache' in {path}")
    return section
