"""
Database Utilities

Utility functions for the PostgreSQL tables that hold export state:
checkpoints, staging rows, the audit log and report bookkeeping.
"""

from contextlib import contextmanager

import psycopg2

from zendesk_export.errors import ConfigurationError, ExportLockedError, PersistenceError


EXPORT_TABLES_DDL = [
    """
    CREATE TABLE IF NOT EXISTS export_checkpoints (
        window_id TEXT PRIMARY KEY,
        cursor_ts BIGINT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS export_staging_rows (
        seq BIGSERIAL PRIMARY KEY,
        window_id TEXT NOT NULL,
        ticket_id BIGINT NOT NULL,
        created_at TEXT,
        requester_email TEXT,
        channel TEXT,
        subject TEXT,
        body_digest TEXT,
        UNIQUE (window_id, ticket_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS export_audit_log (
        id BIGSERIAL PRIMARY KEY,
        logged_at TIMESTAMPTZ NOT NULL,
        window_id TEXT NOT NULL,
        cursor_ts TEXT,
        records_fetched INTEGER,
        records_saved INTEGER,
        last_record_id TEXT,
        status TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS export_reports (
        window_id TEXT PRIMARY KEY,
        location TEXT NOT NULL,
        row_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        notified_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS export_report_grants (
        window_id TEXT NOT NULL,
        recipient TEXT NOT NULL,
        granted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (window_id, recipient)
    );
    """,
]


def get_db_connection(db_cfg):
    """
    Create and return a PostgreSQL database connection.

    Args:
        db_cfg: DatabaseConfig with host, port, name, user and password

    Returns:
        psycopg2 connection object

    Raises:
        ConfigurationError: If name, user or password is missing
        PersistenceError: If the connection cannot be established
    """
    if not all([db_cfg.name, db_cfg.user, db_cfg.password]):
        raise ConfigurationError(
            "Missing required database configuration. "
            "Please set DB_NAME, DB_USER, and DB_PASSWORD."
        )

    try:
        conn = psycopg2.connect(
            host=db_cfg.host,
            port=db_cfg.port,
            dbname=db_cfg.name,
            user=db_cfg.user,
            password=db_cfg.password
        )
    except psycopg2.Error as e:
        raise PersistenceError(f"Could not connect to database {db_cfg.name} on {db_cfg.host}: {e}") from e
    return conn


def ensure_export_tables(conn):
    """
    Create the export tables if they do not exist yet.

    Args:
        conn: PostgreSQL connection object
    """
    cursor = conn.cursor()
    try:
        for ddl in EXPORT_TABLES_DDL:
            cursor.execute(ddl)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        raise PersistenceError(f"Could not create export tables: {e}") from e
    finally:
        cursor.close()


def window_lock_key(window_id: str) -> str:
    return f"zendesk_export:{window_id}"


@contextmanager
def window_lock(conn, window_id: str):
    """
    Hold a session-level advisory lock for one export window.

    Only one worker may advance a window's checkpoint at a time; a second
    worker fails fast instead of waiting.

    Args:
        conn: PostgreSQL connection object
        window_id: Export window identifier (YYYY-MM)

    Raises:
        ExportLockedError: If another session already holds the lock
    """
    key = window_lock_key(window_id)
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (key,))
        acquired = cursor.fetchone()[0]
        conn.commit()
    finally:
        cursor.close()

    if not acquired:
        raise ExportLockedError(f"Export for {window_id} is already running in another worker.")

    try:
        yield
    finally:
        release_window_lock(conn, key)


def release_window_lock(conn, key: str):
    """
    Release the advisory lock for `key`.

    Failures are only reported: the lock dies with the session anyway, and an
    error here must not mask the exception that ended the export.
    """
    try:
        # The body may have left an aborted transaction behind
        conn.rollback()
        cursor = conn.cursor()
        try:
            cursor.execute("SELECT pg_advisory_unlock(hashtext(%s))", (key,))
            conn.commit()
        finally:
            cursor.close()
    except psycopg2.Error as e:
        print(f"⚠️  Could not release lock {key}: {e}")
