from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union
import threading

from sqlalchemy import String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from sql_runner.cache.policy import CachePolicy, cache_key
from sql_runner.cache.store import CacheStore, MemoryCacheStore, dump_entry, load_entry
from sql_runner.db.dialects import AdapterKind, SqlDialect, dialect_for, parse_total_cost
from sql_runner.db.executor import RAW_SQL, ErrorRules, StatementExecutor, build_comment
from sql_runner.db.results import ExecutionOptions, ExecutionResult
from sql_runner.exceptions.errors import ConfigError
from sql_runner.logging.logger import get_logger

log = get_logger("db.data_source")

TABLES_SQL = (
    "SELECT table_name, column_name, ordinal_position, data_type "
    "FROM information_schema.columns WHERE table_schema IN ({schemas})"
)


def _mapping(raw: Mapping[str, Any], key: str) -> Dict[str, Any]:
    val = raw.get(key)
    if val is None:
        return {}
    if not isinstance(val, Mapping):
        raise ConfigError(f"{key} must be a mapping, got {type(val).__name__}")
    return dict(val)


def _str_list(val: Any, key: str) -> Optional[List[str]]:
    if val is None:
        return None
    if isinstance(val, str):
        return [val]
    if not isinstance(val, (list, tuple)):
        raise ConfigError(f"{key} must be a list, got {type(val).__name__}")
    return [str(v) for v in val]


@dataclass(frozen=True)
class DataSourceConfig:
    """Validated settings of one data source.

    linked_columns, smart_columns, smart_variables, variable_defaults and
    local_time_suffix are carried for the presentation layer; the runner
    itself does not read them.
    """

    url: Optional[str] = None
    name: Optional[str] = None
    timeout: Optional[float] = None  # seconds
    cache: Any = None  # bool | number | {mode, expires_in, slow_threshold}
    use_transaction: bool = True
    schemas: Optional[List[str]] = None
    linked_columns: Dict[str, Any] = field(default_factory=dict)
    smart_columns: Dict[str, Any] = field(default_factory=dict)
    smart_variables: Dict[str, Any] = field(default_factory=dict)
    variable_defaults: Dict[str, Any] = field(default_factory=dict)
    local_time_suffix: List[str] = field(default_factory=list)

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "DataSourceConfig":
        raw = dict(raw or {})
        known = {f.name for f in fields(DataSourceConfig)}
        unknown = sorted(k for k in raw if k not in known)
        if unknown:
            log.debug("Ignoring unknown data source settings", extra={"keys": unknown})

        url = raw.get("url")
        if url is not None and not isinstance(url, str):
            raise ConfigError(f"url must be a string, got {type(url).__name__}")

        timeout = raw.get("timeout")
        if timeout is not None:
            if isinstance(timeout, bool):
                raise ConfigError("timeout must be a number of seconds")
            try:
                timeout = float(timeout)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"timeout must be a number of seconds, got {timeout!r}") from e

        use_transaction = raw.get("use_transaction", True)
        if use_transaction is None:
            use_transaction = True
        if not isinstance(use_transaction, bool):
            raise ConfigError(f"use_transaction must be true or false, got {use_transaction!r}")

        name = raw.get("name")
        return DataSourceConfig(
            url=url or None,
            name=str(name) if name is not None else None,
            timeout=timeout or None,
            cache=raw.get("cache"),
            use_transaction=use_transaction,
            schemas=_str_list(raw.get("schemas"), "schemas"),
            linked_columns=_mapping(raw, "linked_columns"),
            smart_columns=_mapping(raw, "smart_columns"),
            smart_variables=_mapping(raw, "smart_variables"),
            variable_defaults=_mapping(raw, "variable_defaults"),
            local_time_suffix=_str_list(raw.get("local_time_suffix"), "local_time_suffix") or [],
        )


class DataSource:
    """One configured database connection plus its cache and timeout policy.

    The data source exclusively owns its engine; reconnect() swaps in a new
    one. Calls are synchronous, each holding one pooled connection while it runs.
    """

    def __init__(
        self,
        id: str,
        settings: Union[Mapping[str, Any], DataSourceConfig],
        cache_store: Optional[CacheStore] = None,
        *,
        allow_missing_url: bool = False,
        error_rules: Optional[ErrorRules] = None,
        user_name_attr: str = "name",
        engine_options: Optional[Dict[str, Any]] = None,
    ):
        self.id = str(id)
        self.settings = settings if isinstance(settings, DataSourceConfig) else DataSourceConfig.from_mapping(settings)
        if not self.settings.url and not allow_missing_url:
            raise ConfigError("Empty url")

        self.cache_store: CacheStore = cache_store if cache_store is not None else MemoryCacheStore()
        self.cache_policy = CachePolicy.from_setting(self.settings.cache)
        self.error_rules = error_rules or ErrorRules()
        self.user_name_attr = user_name_attr
        self.executor = StatementExecutor(self)

        self._engine_options = dict(engine_options or {})
        self._engine_lock = threading.Lock()
        self._engine: Optional[Engine] = self._create_engine() if self.settings.url else None

    def __repr__(self) -> str:
        return f"DataSource(id={self.id!r}, adapter={self.adapter_name!r})"

    # ------------------------------------------------------------------
    # Connection handle
    # ------------------------------------------------------------------
    def _create_engine(self) -> Engine:
        try:
            return create_engine(self.settings.url, pool_pre_ping=True, **self._engine_options)
        except (ArgumentError, ImportError) as e:
            raise ConfigError(f"Cannot connect data source {self.id}: {e}") from e

    @property
    def engine(self) -> Engine:
        engine = self._engine
        if engine is None:
            raise ConfigError(f"Data source {self.id} has no url")
        return engine

    def reconnect(self) -> None:
        """Replace the engine; statements already running finish on the old pool."""
        if not self.settings.url:
            raise ConfigError(f"Data source {self.id} has no url")
        new_engine = self._create_engine()
        with self._engine_lock:
            old_engine, self._engine = self._engine, new_engine
        if old_engine is not None:
            old_engine.dispose()
        log.info("Reconnected data source", extra={"data_source": self.id})

    def dispose(self) -> None:
        with self._engine_lock:
            engine = self._engine
        if engine is not None:
            engine.dispose()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self.settings.name or self.id

    @property
    def timeout(self) -> Optional[float]:
        return self.settings.timeout

    @property
    def use_transaction(self) -> bool:
        return self.settings.use_transaction

    @property
    def linked_columns(self) -> Dict[str, Any]:
        return self.settings.linked_columns

    @property
    def smart_columns(self) -> Dict[str, Any]:
        return self.settings.smart_columns

    @property
    def smart_variables(self) -> Dict[str, Any]:
        return self.settings.smart_variables

    @property
    def variable_defaults(self) -> Dict[str, Any]:
        return self.settings.variable_defaults

    @property
    def local_time_suffix(self) -> List[str]:
        return self.settings.local_time_suffix

    @property
    def cache_mode(self) -> str:
        return self.cache_policy.mode

    # ------------------------------------------------------------------
    # Dialect
    # ------------------------------------------------------------------
    @property
    def adapter_name(self) -> str:
        if self._engine is not None:
            return self._engine.dialect.name
        if self.settings.url:
            return make_url(self.settings.url).get_backend_name()
        return "unknown"

    def adapter_kind(self) -> AdapterKind:
        return self.dialect().kind

    def dialect(self) -> SqlDialect:
        return dialect_for(self.adapter_name)

    def schemas(self) -> List[str]:
        if self.settings.schemas is not None:
            return list(self.settings.schemas)
        url = self.engine.url
        configured = url.query.get("schema")
        if isinstance(configured, tuple):
            configured = configured[0] if configured else None
        if configured:
            return [configured]
        if self.dialect().postgres_family:
            return ["public"]
        # MySQL URLs may name no database
        return [url.database] if url.database else []

    def tables(self) -> List[str]:
        schemas = self.schemas()
        if not schemas:
            return []
        quote = String().literal_processor(dialect=self.engine.dialect)
        statement = TABLES_SQL.format(schemas=", ".join(quote(s) for s in schemas))
        columns, rows, error, cached_at = self.run_statement(statement)
        if error:
            log.warning("Listing tables failed", extra={"data_source": self.id, "error": error})
            return []
        # distinct, in order of first appearance
        return list(dict.fromkeys(row[0] for row in rows))

    def cost(self, statement: str) -> Optional[float]:
        """Planner's total cost for `statement` (PostgreSQL / Redshift only).

        Best-effort: anything the database rejects yields None.
        """
        dialect = self.dialect()
        if not dialect.supports_cost:
            return None
        try:
            # closing the connection rolls back, EXPLAIN ANALYZE included
            with self.engine.connect() as conn:
                first = conn.exec_driver_sql(dialect.explain(statement), execution_options=RAW_SQL).first()
        except SQLAlchemyError:
            log.debug("Cost estimate skipped", extra={"data_source": self.id}, exc_info=True)
            return None
        if first is None:
            return None
        return parse_total_cost(first[0])

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def cache_key(self, statement: str) -> str:
        return cache_key(self.id, statement)

    def clear_cache(self, statement: str) -> None:
        self.cache_store.delete(self.cache_key(statement))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def run_statement(self, statement: str, options: Optional[ExecutionOptions] = None, **kwargs: Any) -> ExecutionResult:
        """Run `statement`, reading and writing the result cache per policy.

        Options may be passed as an ExecutionOptions or as keyword arguments
        (refresh_cache, with_just_cached, user, query).
        """
        if options is None:
            options = ExecutionOptions(**kwargs)
        elif kwargs:
            raise TypeError("Pass either options or keyword arguments, not both")

        policy = self.cache_policy
        key = self.cache_key(statement)

        if policy.should_read(options.refresh_cache):
            blob = self.cache_store.read(key)
            entry = load_entry(blob) if blob is not None else None
            if entry is not None:
                log.info("Cache hit", extra={"data_source": self.id, "key": key})
                return ExecutionResult(
                    columns=entry.columns,
                    rows=entry.rows,
                    cached_at=entry.cached_at,
                    just_cached=False,
                    with_just_cached=options.with_just_cached,
                )

        comment = build_comment(options.user, options.query, self.user_name_attr)
        outcome = self.executor.execute(statement, comment)

        just_cached = False
        if outcome.error is None and policy.should_write(outcome.duration):
            blob = dump_entry(outcome.columns, outcome.rows, datetime.now(timezone.utc))
            self.cache_store.write(key, blob, expires_in=policy.ttl_seconds)
            just_cached = True
            log.info(
                "Cached result",
                extra={"data_source": self.id, "key": key, "expires_in": policy.ttl_seconds},
            )

        return ExecutionResult(
            columns=outcome.columns,
            rows=outcome.rows,
            error=outcome.error,
            cached_at=None,
            just_cached=just_cached,
            with_just_cached=options.with_just_cached,
        )
