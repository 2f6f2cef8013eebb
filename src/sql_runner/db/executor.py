from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, FrozenSet, Iterator, List, Mapping, Optional, Tuple
import re
import time

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import StatementError

from sql_runner.exceptions.errors import TIMEOUT_ERROR_CODES, TIMEOUT_ERRORS, TIMEOUT_MESSAGE
from sql_runner.logging.logger import get_logger

if TYPE_CHECKING:
    from sql_runner.config.settings import Settings
    from sql_runner.db.data_source import DataSource

log = get_logger("db.executor")

# Drivers prefix messages with their own context, e.g. "PG::QueryCanceled: ERROR:  canceling ..."
_ERROR_PREFIX_RE = re.compile(r".+ERROR: ")
_USER_NAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9 ]")
_ID_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")

# Statements go to the cursor verbatim, so "%" never reaches a pyformat driver as a placeholder.
RAW_SQL = {"no_parameters": True}


@dataclass(frozen=True)
class ErrorRules:
    """How driver errors are recognised as timeouts, and what they become."""

    timeout_message: str = TIMEOUT_MESSAGE
    timeout_errors: Tuple[str, ...] = tuple(TIMEOUT_ERRORS)
    timeout_codes: FrozenSet[Any] = field(default_factory=lambda: frozenset(TIMEOUT_ERROR_CODES))

    @staticmethod
    def from_settings(settings: "Settings") -> "ErrorRules":
        return ErrorRules(
            timeout_message=settings.timeout_message,
            timeout_errors=tuple(settings.timeout_errors),
        )


@dataclass(frozen=True)
class ExecutionOutcome:
    columns: List[str]
    rows: List[List[Any]]
    error: Optional[str]
    duration: float


def strip_error_prefix(message: str) -> str:
    return _ERROR_PREFIX_RE.sub("", message, count=1)


def driver_error_code(exc: BaseException) -> Any:
    """Structured code of the DB-API error behind `exc`, when the driver exposes one."""
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    # psycopg2 -> pgcode, psycopg 3 -> sqlstate
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return code
    # PyMySQL / mysqlclient: args == (errno, message)
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def normalize_error(exc: BaseException, rules: ErrorRules) -> str:
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).strip()
    message = strip_error_prefix(message)

    if driver_error_code(exc) in rules.timeout_codes:
        return rules.timeout_message
    if any(marker in message for marker in rules.timeout_errors):
        return rules.timeout_message
    return message


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def build_comment(user: Any = None, query: Any = None, user_name_attr: str = "name") -> str:
    """Diagnostic tag appended to every statement as /*...*/.

    Only letters, numbers and spaces survive in the user name (ids keep _ and -),
    so nothing supplied by a user can close the comment.
    """
    parts = ["blazer"]
    user_id = _field(user, "id")
    if user_id is not None:
        parts.append(f"user_id:{_ID_UNSAFE_RE.sub('', str(user_id))}")
    user_name = _field(user, user_name_attr)
    if user_name is not None:
        parts.append(f"user_name:{_USER_NAME_UNSAFE_RE.sub('', str(user_name))}")
    query_id = _field(query, "id")
    if query_id is not None:
        parts.append(f"query_id:{_ID_UNSAFE_RE.sub('', str(query_id))}")
    return ",".join(parts)


class StatementExecutor:
    """Runs one statement on a data source's engine.

    Statement errors come back as data in ExecutionOutcome.error. Only
    configuration problems (TimeoutNotSupported, ConfigError) raise.
    """

    def __init__(self, data_source: "DataSource"):
        self.data_source = data_source

    @contextmanager
    def _connection(self, engine: Engine) -> Iterator[Connection]:
        if self.data_source.use_transaction:
            with engine.connect() as conn:
                trans = conn.begin()
                try:
                    yield conn
                finally:
                    # Reporting statements never commit.
                    trans.rollback()
        else:
            with engine.connect() as conn:
                conn.execution_options(isolation_level="AUTOCOMMIT")
                yield conn

    def execute(self, statement: str, comment: str) -> ExecutionOutcome:
        ds = self.data_source
        timeout_sql = ds.dialect().timeout_statement(ds.timeout) if ds.timeout else None
        engine = ds.engine

        columns: List[str] = []
        rows: List[List[Any]] = []
        error: Optional[str] = None

        started = time.perf_counter()
        with self._connection(engine) as conn:
            try:
                if timeout_sql:
                    conn.exec_driver_sql(timeout_sql, execution_options=RAW_SQL)
                result = conn.exec_driver_sql(f"{statement} /*{comment}*/", execution_options=RAW_SQL)
                if result.returns_rows:
                    columns = list(result.keys())
                    rows = [list(row) for row in result]
            except StatementError as e:
                columns, rows = [], []
                error = normalize_error(e, ds.error_rules)
        duration = time.perf_counter() - started

        if error is None:
            log.info(
                "Statement executed",
                extra={"data_source": ds.id, "rows": len(rows), "duration": round(duration, 3)},
            )
        elif error == ds.error_rules.timeout_message:
            log.warning("Statement timed out", extra={"data_source": ds.id, "timeout": ds.timeout})
        else:
            log.warning("Statement failed", extra={"data_source": ds.id, "error": error[:300]})

        return ExecutionOutcome(columns=columns, rows=rows, error=error, duration=duration)
