from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, Optional
import os
import re

import yaml

from sql_runner.cache.store import CacheStore, MemoryCacheStore, build_cache_store
from sql_runner.config.settings import Settings
from sql_runner.db.data_source import DataSource
from sql_runner.db.executor import ErrorRules
from sql_runner.exceptions.errors import ConfigError
from sql_runner.logging.logger import get_logger

log = get_logger("db.registry")


_WHOLE_VAR_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} / $VAR in string settings (urls usually come from the environment).

    A value that is only an unset variable becomes None, i.e. "not configured".
    """
    if isinstance(value, str):
        m = _WHOLE_VAR_RE.match(value.strip())
        if m:
            return os.environ.get(m.group(1)) or None
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


class DataSourceRegistry:
    """Named data sources declared in one YAML file.

    data_sources.yaml:
      default_data_source: main   # optional, else the first one declared
      data_sources:
        main:
          url: ${DATABASE_URL}
          timeout: 15
          cache: {mode: slow, expires_in: 60, slow_threshold: 15}
    """

    def __init__(self, data_sources: Dict[str, DataSource], default_id: Optional[str] = None):
        self.data_sources = data_sources
        if default_id is not None and default_id not in data_sources:
            raise ConfigError(f"Unknown default data source: {default_id}")
        self.default_id = default_id or next(iter(data_sources), None)

    @staticmethod
    def load(
        path: str = "config/data_sources.yaml",
        settings: Optional[Settings] = None,
        cache_store: Optional[CacheStore] = None,
    ) -> "DataSourceRegistry":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Data sources not found: {p}")
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        return DataSourceRegistry.from_config(raw, settings=settings, cache_store=cache_store)

    @staticmethod
    def from_config(
        raw: Dict[str, Any],
        settings: Optional[Settings] = None,
        cache_store: Optional[CacheStore] = None,
    ) -> "DataSourceRegistry":
        entries = raw.get("data_sources") or {}
        if not isinstance(entries, dict):
            raise ConfigError("data_sources must be a mapping of id -> settings")

        if cache_store is None:
            cache_store = build_cache_store(settings) if settings else MemoryCacheStore()
        options: Dict[str, Any] = {}
        if settings is not None:
            options = {
                "allow_missing_url": settings.permissive,
                "error_rules": ErrorRules.from_settings(settings),
                "user_name_attr": settings.user_name_attr,
            }

        data_sources: Dict[str, DataSource] = {}
        for ds_id, ds_settings in entries.items():
            ds_id = str(ds_id)
            data_sources[ds_id] = DataSource(
                ds_id, _expand_env(ds_settings or {}), cache_store=cache_store, **options
            )
            log.info("Registered data source", extra={"data_source": ds_id})

        default_id = raw.get("default_data_source")
        return DataSourceRegistry(data_sources, default_id=str(default_id) if default_id else None)

    def get(self, ds_id: str) -> DataSource:
        try:
            return self.data_sources[ds_id]
        except KeyError:
            raise ConfigError(f"Unknown data source: {ds_id}") from None

    @property
    def default(self) -> DataSource:
        if self.default_id is None:
            raise ConfigError("No data sources configured")
        return self.data_sources[self.default_id]

    def __iter__(self) -> Iterator[DataSource]:
        return iter(self.data_sources.values())

    def __len__(self) -> int:
        return len(self.data_sources)

    def __contains__(self, ds_id: object) -> bool:
        return ds_id in self.data_sources

    def dispose(self) -> None:
        for ds in self:
            ds.dispose()
