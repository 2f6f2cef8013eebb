from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple
import io
import pickle
import threading
import time

from sql_runner.config.settings import Settings
from sql_runner.exceptions.errors import CacheStoreError, ConfigError
from sql_runner.logging.logger import get_logger

log = get_logger("cache.store")

EXPIRES_AT_METADATA = "expires-at"

# Globals a cache entry may reference besides plain containers, str, bytes and numbers.
# Blobs can come from a shared bucket, so anything else is refused on load.
ENTRY_GLOBALS = {
    ("builtins", "bytearray"),
    ("builtins", "complex"),
    ("builtins", "frozenset"),
    ("builtins", "set"),
    ("collections", "OrderedDict"),
    ("datetime", "date"),
    ("datetime", "datetime"),
    ("datetime", "time"),
    ("datetime", "timedelta"),
    ("datetime", "timezone"),
    ("decimal", "Decimal"),
    ("uuid", "SafeUUID"),
    ("uuid", "UUID"),
}

@dataclass(frozen=True)
class CacheEntry:
    columns: List[str]
    rows: List[List[Any]]
    cached_at: datetime

def dump_entry(columns: Sequence[str], rows: Sequence[Sequence[Any]], cached_at: datetime) -> bytes:
    """Serialize a result for the cache store.

    pickle keeps driver types (Decimal, datetime, bytes, ...) intact on the way back.
    """
    payload = (list(columns), [list(r) for r in rows], cached_at)
    return pickle.dumps(payload, protocol=pickle.HIGHEST_PROTOCOL)

class _EntryUnpickler(pickle.Unpickler):
    def find_class(self, module: str, name: str) -> Any:
        if (module, name) not in ENTRY_GLOBALS:
            raise pickle.UnpicklingError(f"{module}.{name} is not allowed in a cache entry")
        return super().find_class(module, name)

def load_entry(blob: bytes) -> Optional[CacheEntry]:
    """Inverse of dump_entry. Undecodable blobs read as a miss.

    Only the types listed in ENTRY_GLOBALS are rebuilt, so a forged blob cannot
    call arbitrary code. Rows holding other driver types are cached but always miss.
    """
    try:
        columns, rows, cached_at = _EntryUnpickler(io.BytesIO(blob)).load()
    except Exception:
        log.warning("Discarding undecodable cache entry", extra={"size": len(blob or b"")})
        return None
    return CacheEntry(columns=list(columns), rows=[list(r) for r in rows], cached_at=cached_at)

class CacheStore(Protocol):
    def read(self, key: str) -> Optional[bytes]: ...
    def write(self, key: str, value: bytes, expires_in: Optional[float] = None) -> None: ...
    def delete(self, key: str) -> None: ...

class MemoryCacheStore:
    """Process-local store with per-key TTL (seconds)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[bytes, Optional[float]]] = {}

    def read(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def write(self, key: str, value: bytes, expires_in: Optional[float] = None) -> None:
        expires_at = self._clock() + float(expires_in) if expires_in is not None else None
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

class S3CacheStore:
    """S3-backed store shared between processes.

    Each entry is one object: s3://{bucket}/{prefix}/{key}
    The expiry is kept in the object's metadata (epoch seconds); expired objects
    read as a miss and are left for a bucket lifecycle rule to collect.

    Entries are pickles. load_entry refuses unknown types, but the bucket should
    still be writable only by the runners that share it.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        client: Any = None,
        region: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not bucket:
            raise ConfigError("S3 cache backend requires CACHE_S3_BUCKET to be set.")
        if client is None:
            import boto3
            client = boto3.client("s3", region_name=region or None)
        self.s3 = client
        self.bucket = bucket
        self.prefix = (prefix or "").strip().strip("/")
        self._clock = clock

    def _s3_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    @staticmethod
    def _is_missing(e: Exception) -> bool:
        code = str(getattr(e, "response", {}).get("Error", {}).get("Code", ""))
        return code in {"NoSuchKey", "404", "NotFound"}

    def read(self, key: str) -> Optional[bytes]:
        s3_key = self._s3_key(key)
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=s3_key)
        except Exception as e:
            if self._is_missing(e):
                return None
            log.exception("S3 cache read failed")
            raise CacheStoreError(f"Failed to read cache entry {s3_key}") from e

        expires_at = (obj.get("Metadata") or {}).get(EXPIRES_AT_METADATA)
        if expires_at and self._clock() >= float(expires_at):
            log.debug("S3 cache entry expired", extra={"key": s3_key})
            return None
        return obj["Body"].read()

    def write(self, key: str, value: bytes, expires_in: Optional[float] = None) -> None:
        s3_key = self._s3_key(key)
        put_args: Dict[str, Any] = {"Bucket": self.bucket, "Key": s3_key, "Body": value}
        if expires_in is not None:
            put_args["Metadata"] = {EXPIRES_AT_METADATA: f"{self._clock() + float(expires_in):.3f}"}
        try:
            self.s3.put_object(**put_args)
        except Exception as e:
            log.exception("S3 cache write failed")
            raise CacheStoreError(f"Failed to write cache entry {s3_key}") from e

    def delete(self, key: str) -> None:
        s3_key = self._s3_key(key)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=s3_key)
        except Exception as e:
            if self._is_missing(e):
                return
            log.exception("S3 cache delete failed")
            raise CacheStoreError(f"Failed to delete cache entry {s3_key}") from e

def build_cache_store(settings: Settings) -> CacheStore:
    backend = (settings.cache_backend or "memory").strip().lower()
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "s3":
        return S3CacheStore(
            bucket=settings.cache_s3_bucket,
            prefix=settings.cache_s3_prefix,
            region=settings.aws_region,
        )
    raise ConfigError(f"Unknown CACHE_BACKEND: {backend}")
