from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
import hashlib

from sql_runner.exceptions.errors import ConfigError


CACHE_MODES = ("off", "all", "slow")
DEFAULT_EXPIRES_IN = 60.0  # minutes
DEFAULT_SLOW_THRESHOLD = 15.0  # seconds

CACHE_KEY_PREFIX = ("blazer", "v3")


def cache_key(data_source_id: str, statement: str) -> str:
    """Key of a statement's cached result.

    Persisted format, keep stable: blazer/v3/<data_source_id>/<md5(statement)>.
    The statement text is hashed as-is, so formatting changes yield new keys.
    """
    digest = hashlib.md5(statement.encode("utf-8")).hexdigest()
    return "/".join([*CACHE_KEY_PREFIX, str(data_source_id), digest])


def _as_float(value: Any, default: float, field_name: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"cache.{field_name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"cache.{field_name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class CachePolicy:
    mode: str = "off"
    expires_in: float = DEFAULT_EXPIRES_IN
    slow_threshold: float = DEFAULT_SLOW_THRESHOLD

    @staticmethod
    def from_setting(raw: Any) -> "CachePolicy":
        """Build a policy from a data source's `cache` setting.

        - mapping          -> used as given ({mode, expires_in, slow_threshold})
        - truthy scalar    -> {mode: all, expires_in: <scalar>}
        - missing / false  -> {mode: off}
        """
        if isinstance(raw, Mapping):
            mode = str(raw.get("mode") or "off").strip().lower()
            if mode not in CACHE_MODES:
                raise ConfigError(f"Unknown cache mode: {raw.get('mode')!r}")
            return CachePolicy(
                mode=mode,
                expires_in=_as_float(raw.get("expires_in"), DEFAULT_EXPIRES_IN, "expires_in"),
                slow_threshold=_as_float(raw.get("slow_threshold"), DEFAULT_SLOW_THRESHOLD, "slow_threshold"),
            )
        if raw:
            # `cache: true` keeps the default expiry
            expires_in = DEFAULT_EXPIRES_IN if raw is True else _as_float(raw, DEFAULT_EXPIRES_IN, "expires_in")
            return CachePolicy(mode="all", expires_in=expires_in)
        return CachePolicy(mode="off")

    @property
    def enabled(self) -> bool:
        return self.mode != "off"

    @property
    def ttl_seconds(self) -> float:
        return self.expires_in * 60

    def should_read(self, refresh_cache: bool = False) -> bool:
        return self.enabled and not refresh_cache

    def should_write(self, duration: float) -> bool:
        """Whether an error-free execution that took `duration` seconds is cached."""
        if self.mode == "all":
            return True
        return self.mode == "slow" and duration >= self.slow_threshold
