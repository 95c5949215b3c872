"""Configuration settings for the replicator process."""

import os
import re
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from common.constants import (
    DEFAULT_ALLOWED_NAMESPACES,
    DEFAULT_EXCLUDED_NAMESPACES,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_RECONCILIATION_INTERVAL,
    DEFAULT_STATUS_HOST,
    DEFAULT_STATUS_PORT,
    DEFAULT_WATCH_RETRY_DELAY_SECONDS,
    NAMESPACE_LIST_SEPARATOR,
)
from replicator.exceptions import ConfigurationError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """
    Parse a Go-style duration string into seconds.

    Accepts sequences such as "1m", "90s", "1h30m" or "1.5s". A bare "0" is
    accepted, any other unit-less number is not.

    Args:
        value: Duration string

    Returns:
        Duration in seconds

    Raises:
        ConfigurationError: If the string is not a valid duration
    """
    text = (value or "").strip()
    if not text:
        raise ConfigurationError("Invalid duration: empty string")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if not match:
            raise ConfigurationError(f"Invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    return sign * total


def parse_namespace_list(value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated namespace list, dropping empty segments."""
    if not value:
        return ()
    return tuple(part for part in value.split(NAMESPACE_LIST_SEPARATOR) if part)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid integer for {name}: {raw!r}")


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid number for {name}: {raw!r}")


@dataclass(frozen=True)
class ReplicatorConfig:
    """
    Startup settings. Per-object annotations take precedence over the
    namespace defaults held here.
    """
    reconciliation_interval: str = DEFAULT_RECONCILIATION_INTERVAL
    default_excluded_namespaces: Tuple[str, ...] = DEFAULT_EXCLUDED_NAMESPACES
    default_allowed_namespaces: Tuple[str, ...] = DEFAULT_ALLOWED_NAMESPACES
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    watch_retry_delay: float = DEFAULT_WATCH_RETRY_DELAY_SECONDS
    status_host: str = DEFAULT_STATUS_HOST
    status_port: int = DEFAULT_STATUS_PORT
    interval_seconds: float = field(init=False)

    def __post_init__(self):
        seconds = parse_duration(self.reconciliation_interval)
        if seconds <= 0:
            raise ConfigurationError(
                f"Invalid reconciliation interval {self.reconciliation_interval!r}: must be positive"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError(
                f"Invalid max concurrency {self.max_concurrency}: must be at least 1"
            )
        if self.watch_retry_delay < 0:
            raise ConfigurationError(
                f"Invalid watch retry delay {self.watch_retry_delay}: must not be negative"
            )
        object.__setattr__(self, "interval_seconds", seconds)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReplicatorConfig":
        """
        Load configuration from REPLICATOR_* environment variables.

        Raises:
            ConfigurationError: If any value is malformed
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        if "REPLICATOR_INTERVAL" in env:
            kwargs["reconciliation_interval"] = env["REPLICATOR_INTERVAL"]
        if "REPLICATOR_EXCLUDED_NAMESPACES" in env:
            kwargs["default_excluded_namespaces"] = parse_namespace_list(env["REPLICATOR_EXCLUDED_NAMESPACES"])
        if "REPLICATOR_ALLOWED_NAMESPACES" in env:
            kwargs["default_allowed_namespaces"] = parse_namespace_list(env["REPLICATOR_ALLOWED_NAMESPACES"])
        if "REPLICATOR_MAX_CONCURRENCY" in env:
            kwargs["max_concurrency"] = _parse_int("REPLICATOR_MAX_CONCURRENCY", env["REPLICATOR_MAX_CONCURRENCY"])
        if "REPLICATOR_WATCH_RETRY_DELAY" in env:
            kwargs["watch_retry_delay"] = _parse_float("REPLICATOR_WATCH_RETRY_DELAY", env["REPLICATOR_WATCH_RETRY_DELAY"])
        if "REPLICATOR_STATUS_HOST" in env:
            kwargs["status_host"] = env["REPLICATOR_STATUS_HOST"]
        if "REPLICATOR_STATUS_PORT" in env:
            kwargs["status_port"] = _parse_int("REPLICATOR_STATUS_PORT", env["REPLICATOR_STATUS_PORT"])

        return cls(**kwargs)

    def with_overrides(self, **overrides) -> "ReplicatorConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self
