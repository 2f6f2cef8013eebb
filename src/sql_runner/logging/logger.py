import logging
import os
import glob
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "sql_runner"

_INITIALIZED = False


class SizeTimestampRotatingFileHandler(RotatingFileHandler):
    """Rotate the runner log once it reaches maxBytes.

    The active file keeps its configured name (logs/sql_runner.log). On
    rollover the previous file becomes logs/sql_runner_<YYYYmmdd_HHMMSS>.log.
    backupCount=0 keeps every rotated file, otherwise only the newest N.
    """

    def _rotated_name(self) -> str:
        base_path = Path(self.baseFilename)
        suffix = base_path.suffix or ".log"
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        candidate = base_path.with_name(f"{base_path.stem}_{ts}{suffix}")
        n = 1
        while candidate.exists():
            candidate = base_path.with_name(f"{base_path.stem}_{ts}_{n}{suffix}")
            n += 1
        return str(candidate)

    def _prune(self) -> None:
        base_path = Path(self.baseFilename)
        suffix = base_path.suffix or ".log"
        pattern = str(base_path.with_name(f"{base_path.stem}_*{suffix}"))
        rotated = sorted(glob.glob(pattern), key=os.path.getmtime, reverse=True)
        for stale in rotated[self.backupCount:]:
            try:
                os.remove(stale)
            except OSError:
                pass

    def doRollover(self) -> None:
        if self.stream:
            try:
                self.stream.close()
            finally:
                self.stream = None

        if os.path.exists(self.baseFilename):
            try:
                os.replace(self.baseFilename, self._rotated_name())
            except OSError:
                # a failed rename must not stop statement execution
                pass

        if self.backupCount and self.backupCount > 0:
            self._prune()

        if not self.delay:
            self.stream = self._open()


def init_logging(
    log_level: str = "INFO",
    log_file: str = "logs/sql_runner.log",
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 0,             # 0 = keep all rotated logs
) -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    file_handler = SizeTimestampRotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    stream_handler = logging.StreamHandler()

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for handler in (file_handler, stream_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    _INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the sql_runner namespace, e.g. sql_runner.db.executor."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
