"""Database engine and sessions for QuoteDesk Core.

The queue relies on conditional UPDATEs (claim) and a unique key
(lead dedupe) rather than row locks. On MySQL the engine runs at READ
COMMITTED so a caller that loses a race re-reads the winner's row
instead of its own repeatable-read snapshot.
"""

from typing import Any, Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from quotedesk_core.config import get_settings


def engine_options(url: str) -> dict[str, Any]:
    """Return ``create_engine`` keyword arguments suited to ``url``'s dialect."""
    backend = make_url(url).get_backend_name()
    if backend == "mysql":
        return {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "isolation_level": "READ COMMITTED",
        }
    if backend == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def create_db_engine(url: Optional[str] = None, **overrides: Any) -> Engine:
    """Create an engine for ``url`` (defaults to MYSQL_URL)."""
    url = url or get_settings().mysql_url
    return create_engine(url, **{**engine_options(url), **overrides})


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def get_sync_session_factory() -> sessionmaker[Session]:
    """Get the process-wide session factory, creating the engine on first use."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = create_db_engine()
        _session_factory = sessionmaker(bind=_engine, autoflush=False)
    return _session_factory


def dispose_engine() -> None:
    """Close pooled connections; the next session creates a new engine."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_db_session() -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error."""
    session = get_sync_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
