"""Configuration for the discovery engine.

Defaults equal the engine constants; configuration exists so deployments
can tune backoff, bound subscribe calls or switch discovery off. Batch
size and poll interval are fixed on ``DiscoveryEngine``. The log level is
set through ``configure_logging()``.

Sources, in the order they are usually layered by callers:
1. ``DiscoveryConfig()`` defaults
2. ``DiscoveryConfig.from_yaml(path)`` (top-level mapping or a ``discovery:`` key)
3. ``DiscoveryConfig.from_env()`` (``EVENT_DISCOVERY_*`` variables)

Example:
    >>> config = DiscoveryConfig.from_env()
    >>> engine = DiscoveryEngine(config=config)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError
from .logging import log_debug

ENV_PREFIX = "EVENT_DISCOVERY_"

_FALSE_VALUES = {"0", "false", "no", "off"}


class DiscoveryConfig(BaseModel):
    """Discovery engine configuration.

    Example:
        >>> config = DiscoveryConfig(subscribe_timeout_ms=2000, max_retries=3)
        >>> config.subscribe_timeout_seconds
        2.0
    """

    enabled: bool = Field(
        default=True,
        description="When False, enqueue() accepts and ignores instances.",
    )
    base_delay_ms: int = Field(default=100, ge=0, description="Backoff unit, doubled per attempt.")
    max_delay_ms: int | None = Field(
        default=None,
        ge=0,
        description="Optional cap on a single backoff delay.",
    )
    max_retries: int = Field(default=5, ge=1, description="Retry ceiling per instance.")
    subscribe_timeout_ms: int | None = Field(
        default=None,
        ge=1,
        description="Bound on a single subscribe call. None waits indefinitely.",
    )
    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Metadata cache TTL.")
    cache_max_size: int = Field(default=1000, ge=1, description="Metadata cache capacity.")

    model_config = {"extra": "forbid"}

    @property
    def subscribe_timeout_seconds(self) -> float | None:
        if self.subscribe_timeout_ms is None:
            return None
        return self.subscribe_timeout_ms / 1000.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DiscoveryConfig:
        """Validate a plain mapping.

        Raises:
            ConfigurationError: If validation fails.
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid discovery configuration: {e}") from e

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        base: DiscoveryConfig | None = None,
    ) -> DiscoveryConfig:
        """Build a configuration from environment variables.

        Each field maps to ``EVENT_DISCOVERY_<FIELD>``. The legacy
        ``EVENTS_AUTO_DISCOVERY=false`` switch also disables discovery.

        Args:
            environ: Environment mapping (defaults to os.environ).
            base: Configuration to override (defaults to defaults).

        Raises:
            ConfigurationError: If a value fails validation.
        """
        env = os.environ if environ is None else environ
        data = base.model_dump() if base else {}

        for field in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{field.upper()}")
            if raw is None:
                continue
            if raw.strip().lower() in ("", "none", "null") and field in (
                "max_delay_ms",
                "subscribe_timeout_ms",
            ):
                data[field] = None
            elif field == "enabled":
                data[field] = raw.strip().lower() not in _FALSE_VALUES
            else:
                data[field] = raw.strip()

        legacy = env.get("EVENTS_AUTO_DISCOVERY")
        if legacy is not None and legacy.strip().lower() in _FALSE_VALUES:
            data["enabled"] = False

        config = cls.from_mapping(data)
        log_debug("Loaded discovery configuration from environment")
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> DiscoveryConfig:
        """Load configuration from a YAML file.

        The file may hold the fields at top level or under a
        ``discovery:`` key.

        Raises:
            ConfigurationError: If the file is missing, unreadable, or invalid.
        """
        path = Path(path)
        try:
            with path.open() as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read discovery config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in discovery config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Discovery config {path} must contain a mapping")

        section = data.get("discovery", data)
        if not isinstance(section, dict):
            raise ConfigurationError(f"'discovery' section in {path} must be a mapping")

        config = cls.from_mapping(section)
        log_debug(f"Loaded discovery configuration from {path}")
        return config


__all__ = ["ENV_PREFIX", "DiscoveryConfig"]
