from dataclasses import replace
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event

from sql_runner.cache.store import MemoryCacheStore
from sql_runner.config.settings import Settings
from sql_runner.db.data_source import DataSource
from sql_runner.exceptions.errors import TIMEOUT_ERRORS, TIMEOUT_MESSAGE


class SpyCacheStore(MemoryCacheStore):
    """Memory store that records every call made to it."""

    def __init__(self):
        super().__init__()
        self.reads = []
        self.writes = []
        self.deletes = []

    def read(self, key):
        self.reads.append(key)
        return super().read(key)

    def write(self, key, value, expires_in=None):
        self.writes.append((key, expires_in))
        super().write(key, value, expires_in=expires_in)

    def delete(self, key):
        self.deletes.append(key)
        super().delete(key)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'runner.db'}"


# Seeded database shared by the data sources of a test
@pytest.fixture
def seeded_engine(db_url):
    engine = create_engine(db_url)
    with engine.begin() as conn:
        conn.exec_driver_sql("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        conn.exec_driver_sql("INSERT INTO people (name) VALUES ('ada'), ('grace')")
    yield engine
    engine.dispose()


@pytest.fixture
def store():
    return SpyCacheStore()


@pytest.fixture
def make_source(db_url, seeded_engine, store):
    created = []

    def _make(**settings):
        ds_id = settings.pop("id", "main")
        settings.setdefault("url", db_url)
        ds = DataSource(ds_id, settings, cache_store=store)
        created.append(ds)
        return ds

    yield _make
    for ds in created:
        ds.dispose()


@pytest.fixture
def captured_statements():
    """Attach to a data source and collect every SQL string sent to the driver."""

    def _capture(ds):
        statements = []

        @event.listens_for(ds.engine, "before_cursor_execute")
        def _record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        return statements

    return _capture


@pytest.fixture
def people_count(seeded_engine):
    def _count():
        with seeded_engine.connect() as conn:
            return conn.exec_driver_sql("SELECT count(*) FROM people").scalar()

    return _count


@pytest.fixture
def user():
    return SimpleNamespace(id=7, name="Robert'); DROP TABLE people;--")


@pytest.fixture
def settings_factory(tmp_path):
    base = Settings(
        env="test",
        log_level="INFO",
        log_file=str(tmp_path / "logs" / "sql_runner.log"),
        data_sources_path=str(tmp_path / "data_sources.yaml"),
        user_name_attr="name",
        timeout_message=TIMEOUT_MESSAGE,
        timeout_errors=list(TIMEOUT_ERRORS),
        cache_backend="memory",
        cache_s3_bucket="",
        cache_s3_prefix="sql-runner/cache",
        aws_region="",
    )

    def _make(**overrides):
        return replace(base, **overrides)

    return _make
