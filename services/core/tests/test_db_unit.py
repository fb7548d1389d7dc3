"""Unit tests for database engine and session helpers."""

import pytest
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from quotedesk_core.infra import db


class TestEngineOptions:
    """Tests for per-dialect engine options."""

    def test_mysql_reads_committed(self):
        options = db.engine_options("mysql+pymysql://u:p@quotedesk-mysql:3306/quotedesk")

        assert options["isolation_level"] == "READ COMMITTED"
        assert options["pool_pre_ping"] is True
        assert options["pool_recycle"] == 3600

    def test_sqlite_allows_cross_thread_use(self):
        options = db.engine_options("sqlite:///:memory:")

        assert options == {"connect_args": {"check_same_thread": False}}

    def test_other_backends(self):
        assert db.engine_options("postgresql://u:p@localhost/quotedesk") == {"pool_pre_ping": True}

    def test_create_db_engine_applies_overrides(self):
        engine = db.create_db_engine("sqlite:///:memory:", echo=True)

        try:
            assert engine.echo is True
            with engine.connect() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        finally:
            engine.dispose()


@pytest.fixture
def sqlite_factory(monkeypatch):
    engine = db.create_db_engine("sqlite:///:memory:")
    factory = sessionmaker(bind=engine)
    monkeypatch.setattr(db, "_engine", engine)
    monkeypatch.setattr(db, "_session_factory", factory)
    yield factory
    engine.dispose()


class TestSessions:
    """Tests for the session factory and request session."""

    def test_factory_is_reused(self, sqlite_factory):
        assert db.get_sync_session_factory() is sqlite_factory

    def test_session_commits_on_success(self, sqlite_factory, monkeypatch):
        calls = []
        gen = db.get_db_session()
        session = next(gen)
        monkeypatch.setattr(session, "commit", lambda: calls.append("commit"))

        with pytest.raises(StopIteration):
            next(gen)

        assert calls == ["commit"]

    def test_session_rolls_back_on_error(self, sqlite_factory, monkeypatch):
        calls = []
        gen = db.get_db_session()
        session = next(gen)
        monkeypatch.setattr(session, "rollback", lambda: calls.append("rollback"))

        with pytest.raises(RuntimeError):
            gen.throw(RuntimeError("boom"))

        assert calls == ["rollback"]

    def test_dispose_engine_resets_factory(self, sqlite_factory):
        db.dispose_engine()

        assert db._engine is None
        assert db._session_factory is None
