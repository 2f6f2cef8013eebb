"""Multi-backend SQL statement runner with read-through result caching."""
from sql_runner.cache.policy import CachePolicy, cache_key
from sql_runner.cache.store import CacheStore, MemoryCacheStore, S3CacheStore
from sql_runner.db.data_source import DataSource, DataSourceConfig
from sql_runner.db.dialects import AdapterKind
from sql_runner.db.executor import ErrorRules
from sql_runner.db.registry import DataSourceRegistry
from sql_runner.db.results import ExecutionOptions, ExecutionResult
from sql_runner.exceptions.errors import (
    CacheStoreError,
    ConfigError,
    SqlRunnerError,
    TimeoutNotSupported,
)

__all__ = [
    "AdapterKind",
    "CachePolicy",
    "CacheStore",
    "CacheStoreError",
    "ConfigError",
    "DataSource",
    "DataSourceConfig",
    "DataSourceRegistry",
    "ErrorRules",
    "ExecutionOptions",
    "ExecutionResult",
    "MemoryCacheStore",
    "S3CacheStore",
    "SqlRunnerError",
    "TimeoutNotSupported",
    "cache_key",
]
