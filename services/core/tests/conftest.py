"""Pytest configuration and fixtures for QuoteDesk Core tests.

This module provides fixtures for:
- Database: SQLite in-memory for unit tests
- HTTP client: AsyncClient for FastAPI testing
- Collaborators: in-memory conversation and order sources
"""

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from quotedesk_core.config import Settings
from quotedesk_core.domain.models import Base
from quotedesk_core.domain.services.conversation_index import ConversationIndex

from tests.factories import FakeConversationSource, FakeOrderSource


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        mysql_url="sqlite+pysqlite:///:memory:",
        zoko_api_key="test-zoko-key",
        shopify_store_domain="test-shop.myshopify.com",
        shopify_access_token="test-shopify-token",
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Database Helpers
# -----------------------------------------------------------------------------


def create_schema(engine) -> None:
    """Create all tables, compiling BigInteger as INTEGER for SQLite."""
    from sqlalchemy.dialects import sqlite

    # SQLite only supports autoincrement on INTEGER PRIMARY KEY
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit


def enable_foreign_keys(engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_foreign_keys(engine)
    create_schema(engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def make_file_engine(path, immediate: bool = False):
    """File-backed SQLite engine that several threads can share.

    With ``immediate`` every transaction starts with BEGIN IMMEDIATE, so
    writers queue on the busy timeout instead of failing on lock upgrade.
    """
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_foreign_keys(engine)

    if immediate:
        @event.listens_for(engine, "connect")
        def disable_implicit_begin(dbapi_conn, connection_record):
            dbapi_conn.isolation_level = None

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    create_schema(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine for multi-session tests."""
    engine = make_file_engine(tmp_path / "queue.db")
    yield engine
    engine.dispose()


@pytest.fixture
def immediate_engine(tmp_path):
    """File-backed SQLite engine whose transactions take the write lock up front."""
    engine = make_file_engine(tmp_path / "queue_immediate.db", immediate=True)
    yield engine
    engine.dispose()


# -----------------------------------------------------------------------------
# Collaborator Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def conversation_source() -> FakeConversationSource:
    """Empty in-memory conversation source; tests add conversations to it."""
    return FakeConversationSource()


@pytest.fixture
def order_source() -> FakeOrderSource:
    """Empty in-memory order source; tests add orders to it."""
    return FakeOrderSource()


@pytest.fixture
def conversation_index(conversation_source) -> ConversationIndex:
    return ConversationIndex(source=conversation_source)


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(
    test_settings,
    sync_engine,
    sync_session_factory,
    conversation_index,
    order_source,
) -> FastAPI:
    """Create a FastAPI test application with test settings and DB override."""
    from quotedesk_core.api.deps import get_conversation_index, get_db, get_order_source
    from quotedesk_core.main import app

    # Override settings
    app.state.settings = test_settings

    # Override the database dependency to use test database
    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_conversation_index] = lambda: conversation_index
    app.dependency_overrides[get_order_source] = lambda: order_source

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing FastAPI endpoints.

    Note: The db_session fixture is included to ensure the test database
    is set up before the client is created.
    """
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Cleanup Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from quotedesk_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
