import pytest
import yaml

from sql_runner.config.settings import load_settings
from sql_runner.exceptions.errors import TIMEOUT_ERRORS, TIMEOUT_MESSAGE

ENV_KEYS = [
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_FILE",
    "DATA_SOURCES_PATH",
    "USER_NAME_ATTR",
    "TIMEOUT_MESSAGE",
    "TIMEOUT_ERRORS",
    "CACHE_BACKEND",
    "CACHE_S3_BUCKET",
    "CACHE_S3_PREFIX",
    "AWS_REGION",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def write_config(tmp_path, cfg):
    path = tmp_path / "test.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return str(path)


def test_defaults_from_minimal_file(tmp_path):
    settings = load_settings(write_config(tmp_path, {}))

    assert settings.env == "dev"
    assert settings.permissive is True
    assert settings.log_level == "INFO"
    assert settings.data_sources_path == "config/data_sources.yaml"
    assert settings.user_name_attr == "name"
    assert settings.timeout_message == TIMEOUT_MESSAGE
    assert settings.timeout_errors == TIMEOUT_ERRORS
    assert settings.cache_backend == "memory"


def test_values_from_yaml(tmp_path):
    cfg = {
        "app": {"log_level": "DEBUG", "log_file": "var/runner.log"},
        "runner": {"user_name_attr": "email", "timeout_errors": ["took too long"]},
        "cache": {"backend": "S3", "s3": {"bucket": "results", "prefix": "runner"}},
        "aws": {"region": "eu-west-1"},
    }
    settings = load_settings(write_config(tmp_path, cfg))

    assert settings.log_level == "DEBUG"
    assert settings.log_file == "var/runner.log"
    assert settings.user_name_attr == "email"
    assert settings.timeout_errors == ["took too long"]
    assert settings.cache_backend == "s3"
    assert settings.cache_s3_bucket == "results"
    assert settings.cache_s3_prefix == "runner"
    assert settings.aws_region == "eu-west-1"


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("TIMEOUT_ERRORS", "first marker, second marker")
    settings = load_settings(write_config(tmp_path, {"app": {"log_level": "DEBUG"}}))

    assert settings.env == "production"
    assert settings.permissive is False
    assert settings.log_level == "WARNING"
    assert settings.timeout_errors == ["first marker", "second marker"]


def test_config_file_follows_app_env(tmp_path, monkeypatch):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "staging.yaml").write_text("app:\n  log_level: ERROR\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_ENV", "staging")

    assert load_settings().log_level == "ERROR"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.yaml"))
