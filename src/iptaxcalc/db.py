from __future__ import annotations

from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import DB_URL

# ---------- Engine / Session ----------
_connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

# echo=False to keep tests quiet
_engine: Engine = create_engine(DB_URL, future=True, echo=False, connect_args=_connect_args)


SessionLocal = sessionmaker(
    bind=_engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


@event.listens_for(_engine, "connect")
def _set_sqlite_pragmas(dbapi_conn, _record) -> None:
    if not DB_URL.startswith("sqlite"):
        return
    cur = dbapi_conn.cursor()
    # Write-Ahead Log: allows readers while one writer is active
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA foreign_keys=ON;")
    # How long SQLite should wait if the DB is busy (ms)
    cur.execute("PRAGMA busy_timeout=5000;")
    cur.close()


# ---------- Init helpers ----------

def init_db() -> None:
    """
    Create ORM tables (no-op for tables that already exist).
    """
    # Import models here to avoid circular imports
    from .models import Base  # noqa: WPS433 (import inside function)

    Base.metadata.create_all(bind=_engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
