"""
core/db.py -- SQLAlchemy engine construction shared by every store.

SQLAlchemy Core keeps the database swappable: SQLite by default, PostgreSQL
by connection string. Every engine applies the same per-call timeout so no
store call can hang a request indefinitely:
  SQLite      -- busy timeout (how long a writer waits for the lock)
  PostgreSQL  -- connect timeout + server-side statement_timeout
  all others  -- pool checkout timeout

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/,
mailer/, or posts/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

DEFAULT_DB_URL = "sqlite:///socialgate.db"
DEFAULT_TIMEOUT = 5.0


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str = DEFAULT_DB_URL, timeout: float = DEFAULT_TIMEOUT) -> Engine:
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_args["pool_timeout"] = timeout
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
