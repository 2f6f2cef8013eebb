from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, List, Optional

import pandas as pd


@dataclass(frozen=True)
class ExecutionOptions:
    refresh_cache: bool = False
    with_just_cached: bool = False
    # Only used to tag the statement comment; any object (or mapping) with an id
    user: Any = None
    query: Any = None


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one run_statement call.

    A non-empty `error` is authoritative: columns and rows are then empty.
    Unpacks like the classic tuple, (columns, rows, error, cached_at), with
    just_cached appended when the call asked for it via with_just_cached.
    """

    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)
    error: Optional[str] = None
    cached_at: Optional[datetime] = None
    just_cached: bool = False
    with_just_cached: bool = field(default=False, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cached(self) -> bool:
        """Served from a previous cache entry."""
        return self.cached_at is not None

    def __iter__(self) -> Iterator[Any]:
        yield self.columns
        yield self.rows
        yield self.error
        yield self.cached_at
        if self.with_just_cached:
            yield self.just_cached

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.columns)
