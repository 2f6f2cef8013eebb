from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import re

from sql_runner.exceptions.errors import TimeoutNotSupported


class AdapterKind(str, Enum):
    POSTGRESQL = "PostgreSQL"
    REDSHIFT = "Redshift"
    MYSQL = "MySQL"
    OTHER = "Other"


_KINDS_BY_DIALECT = {
    "postgresql": AdapterKind.POSTGRESQL,
    "postgis": AdapterKind.POSTGRESQL,
    "redshift": AdapterKind.REDSHIFT,
    "mysql": AdapterKind.MYSQL,
    "mariadb": AdapterKind.MYSQL,
}

# Total cost of the top plan node, e.g. "Seq Scan on t  (cost=0.00..35.50 rows=2550 width=4)"
_COST_RE = re.compile(r"cost=\d+\.\d+\.\.(\d+\.\d+) ")


def adapter_kind_for(dialect_name: str) -> AdapterKind:
    """Classify a SQLAlchemy dialect name (engine.dialect.name)."""
    return _KINDS_BY_DIALECT.get((dialect_name or "").strip().lower(), AdapterKind.OTHER)


@dataclass(frozen=True)
class SqlDialect:
    """Dialect-specific SQL used by the runner.

    Statements themselves are never rewritten; only the session setup
    around them (timeouts) and introspection queries vary per engine.
    """

    kind: AdapterKind
    adapter_name: str
    timeout_template: Optional[str] = None  # formatted with {ms}

    @property
    def postgres_family(self) -> bool:
        return self.kind in (AdapterKind.POSTGRESQL, AdapterKind.REDSHIFT)

    @property
    def supports_cost(self) -> bool:
        return self.postgres_family

    @property
    def supports_timeout(self) -> bool:
        return self.timeout_template is not None

    def timeout_statement(self, seconds: float) -> str:
        """Session statement that bounds the next statement to `seconds`."""
        if not self.supports_timeout:
            raise TimeoutNotSupported(f"Timeout not supported for {self.adapter_name} adapter")
        return self.timeout_template.format(ms=int(float(seconds) * 1000))

    def explain(self, statement: str) -> str:
        return f"EXPLAIN {statement}"


def dialect_for(dialect_name: str) -> SqlDialect:
    kind = adapter_kind_for(dialect_name)
    name = dialect_name or "unknown"
    if kind in (AdapterKind.POSTGRESQL, AdapterKind.REDSHIFT):
        return SqlDialect(kind=kind, adapter_name=name, timeout_template="SET statement_timeout = {ms}")
    if kind == AdapterKind.MYSQL:
        return SqlDialect(kind=kind, adapter_name=name, timeout_template="SET max_execution_time = {ms}")
    return SqlDialect(kind=kind, adapter_name=name)


def parse_total_cost(plan_line: object) -> Optional[float]:
    """Extract the total cost from the first line of an EXPLAIN plan."""
    if plan_line is None:
        return None
    m = _COST_RE.search(str(plan_line))
    if not m:
        return None
    return float(m.group(1))
