"""Session statistics store. SQLite by default; set DATABASE_URL for MySQL.
Startup ensures the table exists; on connection failure logs verbosely and falls back to in-memory SQLite so the app can start.
Only per-item outcomes are recorded here: no job state is ever resumed from it."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from mediabatch import config as app_config

logger = logging.getLogger("mediabatch.db")

_engine: Optional[Engine] = None

IN_MEMORY_URL = "sqlite:///:memory:"


def _is_sqlite() -> bool:
    return "sqlite" in app_config.DATABASE_URL


def _db_kind() -> str:
    return "SQLite" if _is_sqlite() else "MySQL"


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs = {}
        if _is_sqlite():
            kwargs["connect_args"] = {"check_same_thread": False}
            if app_config.DATABASE_URL == IN_MEMORY_URL:
                # in-memory databases live per connection; share one
                kwargs["poolclass"] = StaticPool
        _engine = create_engine(app_config.DATABASE_URL, **kwargs)
        logger.info("Database engine created (%s)", _db_kind())
    return _engine


def _create_sqlite_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS session_activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            run_id TEXT,
            kind TEXT NOT NULL,
            filename TEXT,
            output_name TEXT,
            input_bytes INTEGER,
            output_bytes INTEGER,
            status TEXT NOT NULL,
            error TEXT,
            created_at TEXT NOT NULL,
            duration_seconds REAL
        )
    """))
    conn.commit()


def _create_mysql_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS session_activities (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            session_id VARCHAR(255) NOT NULL,
            item_id VARCHAR(64) NOT NULL,
            run_id VARCHAR(255),
            kind VARCHAR(16) NOT NULL,
            filename VARCHAR(512),
            output_name VARCHAR(512),
            input_bytes BIGINT,
            output_bytes BIGINT,
            status VARCHAR(50) NOT NULL,
            error TEXT,
            created_at VARCHAR(50) NOT NULL,
            duration_seconds DOUBLE
        )
    """))
    conn.commit()


def _ensure_tables(engine: Engine) -> None:
    with engine.connect() as conn:
        if _is_sqlite():
            _create_sqlite_tables(conn)
        else:
            _create_mysql_tables(conn)
    logger.info("Required table ensured: session_activities")


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to in-memory SQLite so the app can start."""
    global _engine
    kind = _db_kind()
    try:
        _ensure_tables(get_engine())
        logger.info("Database ready: %s", kind)
        return
    except SQLAlchemyError as e:
        logger.exception("Database init failed (%s): %s. Using in-memory SQLite.", kind, e)

    app_config.DATABASE_URL = IN_MEMORY_URL
    _engine = None
    _ensure_tables(get_engine())
    logger.warning("Database unavailable. Using in-memory SQLite; statistics will not persist across restarts.")


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_activity(
    session_id: str,
    item_id: str,
    kind: str,
    filename: str,
    status: str,
    *,
    run_id: Optional[str] = None,
    output_name: Optional[str] = None,
    input_bytes: Optional[int] = None,
    output_bytes: Optional[int] = None,
    error: Optional[str] = None,
    duration_seconds: Optional[float] = None,
) -> None:
    params = {
        "session_id": session_id,
        "item_id": item_id,
        "run_id": run_id,
        "kind": kind,
        "filename": filename,
        "output_name": output_name,
        "input_bytes": input_bytes,
        "output_bytes": output_bytes,
        "status": status,
        "error": error,
        "created_at": _now_iso(),
        "duration_seconds": duration_seconds,
    }
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO session_activities (session_id, item_id, run_id, kind, filename, output_name, input_bytes, output_bytes, status, error, created_at, duration_seconds)
                VALUES (:session_id, :item_id, :run_id, :kind, :filename, :output_name, :input_bytes, :output_bytes, :status, :error, :created_at, :duration_seconds)
            """),
            params,
        )


def get_session_stats(session_id: str) -> dict:
    """Aggregate stats for a session: items converted/failed, bytes in and out, compression and time spent."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("""
                SELECT
                    COUNT(*) AS items_processed,
                    COALESCE(SUM(CASE WHEN status = 'done' THEN 1 ELSE 0 END), 0) AS items_converted,
                    COALESCE(SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END), 0) AS items_failed,
                    COALESCE(SUM(CASE WHEN status = 'done' THEN input_bytes ELSE 0 END), 0) AS total_input_bytes,
                    COALESCE(SUM(output_bytes), 0) AS total_output_bytes,
                    COALESCE(SUM(duration_seconds), 0) AS time_spent_seconds
                FROM session_activities WHERE session_id = :sid
            """),
            {"sid": session_id},
        ).fetchone()
    if not row or row[0] == 0:
        return {
            "items_processed": 0,
            "items_converted": 0,
            "items_failed": 0,
            "total_input_bytes": 0,
            "total_output_bytes": 0,
            "compression_percent": 0.0,
            "time_spent_seconds": 0.0,
        }
    total_input = int(row[3])
    total_output = int(row[4])
    compression_percent = 0.0
    if total_input > 0:
        compression_percent = round((1.0 - total_output / total_input) * 100.0, 1)
    return {
        "items_processed": int(row[0]),
        "items_converted": int(row[1]),
        "items_failed": int(row[2]),
        "total_input_bytes": total_input,
        "total_output_bytes": total_output,
        "compression_percent": compression_percent,
        "time_spent_seconds": float(row[5]),
    }


def get_session_activities(session_id: str, limit: int = 100) -> list[dict]:
    """Recent activities for the session, newest first."""
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("""
                SELECT item_id, run_id, kind, filename, output_name, input_bytes, output_bytes, status, error, created_at, duration_seconds
                FROM session_activities WHERE session_id = :sid ORDER BY id DESC LIMIT :lim
            """),
            {"sid": session_id, "lim": limit},
        ).fetchall()
    return [
        {
            "item_id": r[0],
            "run_id": r[1],
            "kind": r[2],
            "filename": r[3],
            "output_name": r[4],
            "input_bytes": r[5],
            "output_bytes": r[6],
            "status": r[7],
            "error": r[8],
            "created_at": r[9],
            "duration_seconds": r[10],
        }
        for r in rows
    ]


def delete_session_data(session_id: str) -> int:
    """Delete all activities for the session. Returns the number of rows removed."""
    with session() as conn:
        result = conn.execute(text("DELETE FROM session_activities WHERE session_id = :sid"), {"sid": session_id})
    return result.rowcount or 0
