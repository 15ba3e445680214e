from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple
from urllib.parse import urlparse

from synapse_backend.errors import DependencyError
from synapse_backend.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except ValueError:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    This is a lightweight conversion that avoids replacing '?' inside single/double-quoted
    string literals. It's not a full SQL parser, but it is sufficient for this codebase.
    Literal '%' characters are doubled so psycopg2 does not treat them as placeholders.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]

        if ch == "'" and not in_double:
            out.append(ch)
            if in_single:
                # Escaped single quote: ''
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("'")
                    i += 2
                    continue
                in_single = False
            else:
                in_single = True
            i += 1
            continue

        if ch == '"' and not in_single:
            out.append(ch)
            if in_double:
                if i + 1 < len(sql) and sql[i + 1] == '"':
                    out.append('"')
                    i += 2
                    continue
                in_double = False
            else:
                in_double = True
            i += 1
            continue

        if ch == "?" and not in_single and not in_double:
            out.append("%s")
            i += 1
            continue

        if ch == "%":
            out.append("%%")
            i += 1
            continue

        out.append(ch)
        i += 1

    return "".join(out)


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return int(self._cur.rowcount or 0)

    def close(self) -> None:
        self._cur.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cur, name)


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like sqlite3 connections."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        wrapper = PGCursor(self._conn.cursor())
        wrapper.execute(sql, params)
        return wrapper

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()


class SQLiteConnection:
    """sqlite3 connection with the same surface as PGConnection."""

    dialect = "sqlite"

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        return self._conn.execute(sql, tuple(params or ()))

    def executescript(self, sql: str) -> None:
        self._conn.executescript(sql)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()


# -----------------------------
# Postgres connection pools
# -----------------------------

_PG_POOLS: Dict[str, Any] = {}
_PG_POOLS_LOCK = threading.Lock()


def configure_pool(db_dsn: str, *, minconn: int = 1, maxconn: int = 10) -> None:
    """Create the process-wide Postgres pool for a DSN (no-op for SQLite or if it exists)."""
    dsn = (db_dsn or "").strip()
    if _detect_dialect(dsn) != "postgres":
        return
    with _PG_POOLS_LOCK:
        if dsn in _PG_POOLS:
            return
        _PG_POOLS[dsn] = _new_pg_pool(dsn, minconn=minconn, maxconn=maxconn)
        _debug(f"Postgres pool ready (min={minconn} max={maxconn})")


def _new_pg_pool(dsn: str, *, minconn: int, maxconn: int) -> Any:
    try:
        import psycopg2.extras
        import psycopg2.pool
    except ImportError as e:
        raise RuntimeError(
            "Postgres selected but psycopg2 is not installed. "
            "Install psycopg2-binary and try again."
        ) from e

    # RealDictCursor makes fetchone()/fetchall() rows act like dicts.
    return psycopg2.pool.ThreadedConnectionPool(
        max(1, int(minconn)),
        max(1, int(maxconn)),
        dsn,
        cursor_factory=psycopg2.extras.RealDictCursor,
    )


def _get_pg_pool(dsn: str) -> Any:
    with _PG_POOLS_LOCK:
        pool = _PG_POOLS.get(dsn)
        if pool is None:
            pool = _new_pg_pool(dsn, minconn=1, maxconn=10)
            _PG_POOLS[dsn] = pool
        return pool


def close_pools() -> None:
    with _PG_POOLS_LOCK:
        for pool in _PG_POOLS.values():
            pool.closeall()
        _PG_POOLS.clear()


def _sqlite_path(dsn: str) -> str:
    # Support sqlite:///path style
    if dsn.lower().startswith("sqlite:///"):
        return dsn[len("sqlite:///") :]
    return dsn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """Acquire a connection for one unit of work.

    Commits when the block exits normally, rolls back on any exception, and always
    releases the connection (back to the pool for Postgres, closed for SQLite).
    Failure to acquire a connection raises DependencyError.
    """
    dsn = (db_dsn or "").strip()

    if _detect_dialect(dsn) == "postgres":
        import psycopg2
        import psycopg2.pool

        pool = _get_pg_pool(dsn)
        try:
            raw = pool.getconn()
        except (psycopg2.OperationalError, psycopg2.pool.PoolError) as e:
            _debug(f"Postgres connection unavailable: {e}")
            raise DependencyError("database_unavailable") from e

        conn = PGConnection(raw)
        broken = False
        try:
            yield conn
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except psycopg2.Error:
                broken = True
            raise
        finally:
            pool.putconn(raw, close=broken or bool(raw.closed))
        return

    path = _sqlite_path(dsn)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    try:
        raw_sqlite = sqlite3.connect(path, timeout=30, check_same_thread=False)
    except sqlite3.OperationalError as e:
        _debug(f"SQLite connection unavailable: {e}")
        raise DependencyError("database_unavailable") from e

    raw_sqlite.row_factory = sqlite3.Row
    conn_sqlite = SQLiteConnection(raw_sqlite)
    try:
        # Concurrency pragmas (safe defaults for several API workers on one file)
        raw_sqlite.execute("PRAGMA journal_mode=WAL;")
        raw_sqlite.execute("PRAGMA busy_timeout=5000;")  # 5s
        raw_sqlite.execute("PRAGMA foreign_keys = ON;")
        yield conn_sqlite
        conn_sqlite.commit()
    except Exception:
        conn_sqlite.rollback()
        raise
    finally:
        raw_sqlite.close()


def wait_for_db(
    db_dsn: str,
    *,
    retries: int = 5,
    delay_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Run a trivial query until it succeeds, at most ``retries`` times.

    Returns the 1-based attempt that succeeded. Raises DependencyError once retries are
    exhausted; the caller treats that as fatal.
    """
    attempts = max(1, int(retries))
    last_err: str | None = None
    for attempt in range(1, attempts + 1):
        try:
            with connect(db_dsn) as conn:
                conn.execute("SELECT 1").fetchone()
            _debug(f"Database connected on attempt {attempt}")
            return attempt
        except Exception as e:
            last_err = str(e)
            _debug(f"Database connection attempt {attempt} failed: {last_err}")
            if attempt < attempts:
                sleep(delay_seconds)
    raise DependencyError(f"database_unreachable: {last_err}")


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    dialect = _detect_dialect(db_dsn)
    _debug(f"Initializing DB ({dialect})")
    with connect(db_dsn) as conn:
        schema_sql = get_schema_sql(dialect)
        if dialect == "postgres":
            # Ensure only one process runs schema DDL at a time.
            conn.execute("SELECT pg_advisory_lock(2147483646);")
            try:
                _exec_schema(conn, schema_sql, dialect=dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(2147483646);")
        else:
            _exec_schema(conn, schema_sql, dialect=dialect)

        _migrate(conn, dialect=dialect)


def _exec_schema(conn: Any, ddl: str, *, dialect: str) -> None:
    if dialect == "postgres":
        # Execute multi-statement DDL (naive split is OK for our schema)
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        for stmt in statements:
            conn.execute(stmt)
        return

    # SQLite can run it in one go
    conn.executescript(ddl)


def _has_column(conn: Any, table: str, col: str, *, dialect: str) -> bool:
    if dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.columns
            WHERE table_schema='public'
              AND table_name=?
              AND column_name=?
            LIMIT 1
            """,
            (table, col),
        ).fetchone()
        return r is not None

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Lightweight forward-only migrations for databases created by older releases."""
    user_cols_to_add: List[Tuple[str, str]] = [
        ("notifications_enabled", "INTEGER NOT NULL DEFAULT 1"),
        ("last_login_at", "TEXT"),
    ]
    for col, ctype in user_cols_to_add:
        if not _has_column(conn, "users", col, dialect=dialect):
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ctype}")

    class_cols_to_add: List[Tuple[str, str]] = [
        ("cancel_reason", "TEXT"),
        ("description", "TEXT"),
    ]
    for col, ctype in class_cols_to_add:
        if not _has_column(conn, "classes", col, dialect=dialect):
            conn.execute(f"ALTER TABLE classes ADD COLUMN {col} {ctype}")


def row_to_dict(row: Any) -> Dict[str, Any] | None:
    if row is None:
        return None
    return dict(row)


def execute_returning(conn: Any, sql: str, params: Sequence[Any] = ()) -> Any:
    """Run an INSERT/UPDATE ... RETURNING statement and return its first row (or None).

    The result is fully drained so SQLite finishes the statement before the next one runs.
    """
    rows = conn.execute(sql, params).fetchall()
    return rows[0] if rows else None
