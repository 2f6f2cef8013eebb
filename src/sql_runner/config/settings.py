from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import yaml
from dotenv import load_dotenv

from sql_runner.exceptions.errors import TIMEOUT_ERRORS, TIMEOUT_MESSAGE

load_dotenv()

PERMISSIVE_ENVS = ("development", "dev")

def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)

def _env_list(key: str, default: List[str]) -> List[str]:
    val = os.environ.get(key)
    if not val:
        return default
    return [x.strip() for x in val.split(",") if x.strip()]

@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    log_file: str

    # Where data sources are declared (see config/data_sources.yaml)
    data_sources_path: str
    # Attribute read from the `user` option for the statement comment
    user_name_attr: str

    # Canonical text returned for any statement that hit its timeout
    timeout_message: str
    timeout_errors: List[str]

    # ------------------------------------------------------------------
    # Result cache backend (memory / s3)
    # ------------------------------------------------------------------
    cache_backend: str
    cache_s3_bucket: str
    cache_s3_prefix: str
    aws_region: str

    @property
    def permissive(self) -> bool:
        """Development mode: data sources may be declared without a url."""
        return self.env.strip().lower() in PERMISSIVE_ENVS

def load_settings(config_path: Optional[str] = None) -> Settings:
    app_env = _env("APP_ENV", "dev")
    cfg_path = Path(config_path) if config_path else Path("config") / f"{app_env}.yaml"
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}

    app_cfg = cfg.get("app") or {}
    log_level = _env("LOG_LEVEL", str(app_cfg.get("log_level", "INFO")))
    log_file = _env("LOG_FILE", str(app_cfg.get("log_file", "logs/sql_runner.log")))

    runner_cfg = cfg.get("runner") or {}
    data_sources_path = _env(
        "DATA_SOURCES_PATH", str(runner_cfg.get("data_sources_path", "config/data_sources.yaml"))
    )
    user_name_attr = _env("USER_NAME_ATTR", str(runner_cfg.get("user_name_attr", "name")))
    timeout_message = _env("TIMEOUT_MESSAGE", str(runner_cfg.get("timeout_message", TIMEOUT_MESSAGE)))
    timeout_errors = _env_list("TIMEOUT_ERRORS", list(runner_cfg.get("timeout_errors") or TIMEOUT_ERRORS))

    # ------------------------------ Cache ------------------------------
    # Default to the in-process store so a bare checkout runs without AWS.
    cache_cfg = cfg.get("cache") or {}
    cache_backend = (_env("CACHE_BACKEND", str(cache_cfg.get("backend", "memory"))) or "memory").strip().lower()
    s3_cfg = cache_cfg.get("s3") or {}
    cache_s3_bucket = _env("CACHE_S3_BUCKET", str(s3_cfg.get("bucket", ""))) or ""
    cache_s3_prefix = _env("CACHE_S3_PREFIX", str(s3_cfg.get("prefix", "sql-runner/cache"))) or ""
    aws_region = _env("AWS_REGION", str((cfg.get("aws") or {}).get("region", ""))) or ""

    return Settings(
        env=app_env,
        log_level=log_level,
        log_file=log_file,
        data_sources_path=data_sources_path,
        user_name_attr=user_name_attr,
        timeout_message=timeout_message,
        timeout_errors=timeout_errors,
        cache_backend=cache_backend,
        cache_s3_bucket=cache_s3_bucket,
        cache_s3_prefix=cache_s3_prefix,
        aws_region=aws_region,
    )
