import pytest
import yaml

from sql_runner.cache.store import MemoryCacheStore
from sql_runner.db.registry import DataSourceRegistry
from sql_runner.exceptions.errors import ConfigError


@pytest.fixture
def registry_config(db_url):
    return {
        "data_sources": {
            "main": {"url": db_url, "cache": {"mode": "all"}},
            "replica": {"url": db_url, "name": "Read replica", "use_transaction": False},
        }
    }


def test_from_config_builds_sources(registry_config, seeded_engine):
    registry = DataSourceRegistry.from_config(registry_config)
    try:
        assert len(registry) == 2
        assert "main" in registry
        assert registry.default.id == "main"
        assert registry.get("replica").name == "Read replica"
        assert registry.get("replica").use_transaction is False
        assert [ds.id for ds in registry] == ["main", "replica"]
    finally:
        registry.dispose()


def test_sources_share_one_cache_store(registry_config, seeded_engine):
    store = MemoryCacheStore()
    registry = DataSourceRegistry.from_config(registry_config, cache_store=store)
    try:
        assert all(ds.cache_store is store for ds in registry)
        registry.get("main").run_statement("SELECT 1 AS one")
        assert len(store) == 1
    finally:
        registry.dispose()


def test_explicit_default(registry_config, seeded_engine):
    registry_config["default_data_source"] = "replica"
    registry = DataSourceRegistry.from_config(registry_config)
    try:
        assert registry.default.id == "replica"
    finally:
        registry.dispose()


def test_unknown_default_and_unknown_id(registry_config, seeded_engine):
    registry = DataSourceRegistry.from_config(registry_config)
    try:
        with pytest.raises(ConfigError, match="Unknown data source"):
            registry.get("nope")
    finally:
        registry.dispose()

    registry_config["default_data_source"] = "nope"
    with pytest.raises(ConfigError, match="Unknown default data source"):
        DataSourceRegistry.from_config(registry_config)


def test_empty_registry_has_no_default():
    registry = DataSourceRegistry.from_config({})
    with pytest.raises(ConfigError):
        registry.default


def test_env_expansion(monkeypatch, db_url, seeded_engine):
    monkeypatch.setenv("RUNNER_TEST_URL", db_url)
    monkeypatch.setenv("RUNNER_TEST_SCHEMA", "analytics")
    registry = DataSourceRegistry.from_config(
        {"data_sources": {"main": {"url": "${RUNNER_TEST_URL}", "schemas": ["$RUNNER_TEST_SCHEMA", "public"]}}}
    )
    try:
        ds = registry.get("main")
        assert ds.settings.url == db_url
        assert ds.schemas() == ["analytics", "public"]
    finally:
        registry.dispose()


def test_unset_url_requires_permissive_mode(monkeypatch, settings_factory):
    monkeypatch.delenv("RUNNER_TEST_MISSING_URL", raising=False)
    raw = {"data_sources": {"main": {"url": "${RUNNER_TEST_MISSING_URL}"}}}

    with pytest.raises(ConfigError, match="Empty url"):
        DataSourceRegistry.from_config(raw, settings=settings_factory(env="production"))

    registry = DataSourceRegistry.from_config(raw, settings=settings_factory(env="development"))
    assert registry.default.settings.url is None


def test_settings_flow_into_sources(registry_config, settings_factory, seeded_engine):
    settings = settings_factory(timeout_message="Slow query", user_name_attr="email")
    registry = DataSourceRegistry.from_config(registry_config, settings=settings)
    try:
        ds = registry.default
        assert ds.error_rules.timeout_message == "Slow query"
        assert ds.user_name_attr == "email"
        assert isinstance(ds.cache_store, MemoryCacheStore)
    finally:
        registry.dispose()


def test_load_from_yaml(tmp_path, registry_config, seeded_engine):
    path = tmp_path / "data_sources.yaml"
    path.write_text(yaml.safe_dump(registry_config), encoding="utf-8")

    registry = DataSourceRegistry.load(str(path))
    try:
        assert registry.default.run_statement("SELECT count(*) FROM people").rows == [[2]]
    finally:
        registry.dispose()


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        DataSourceRegistry.load(str(tmp_path / "nope.yaml"))


def test_data_sources_must_be_mapping():
    with pytest.raises(ConfigError):
        DataSourceRegistry.from_config({"data_sources": ["main"]})
