"""
Export Store

PostgreSQL-backed storage for everything the export keeps between runs:
- export_checkpoints: one cursor per window_id
- export_staging_rows: enriched rows awaiting the report
- export_audit_log: one row per controller iteration
- export_reports / export_report_grants: finalization bookkeeping
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import psycopg2
from psycopg2.extras import execute_values

from zendesk_export.errors import PersistenceError
from zendesk_export.transform import EnrichedRow

UPSERT_CHECKPOINT_SQL = """
    INSERT INTO export_checkpoints (window_id, cursor_ts, updated_at)
    VALUES (%s, %s, now())
    ON CONFLICT (window_id) DO UPDATE SET
        cursor_ts = GREATEST(export_checkpoints.cursor_ts, EXCLUDED.cursor_ts),
        updated_at = now()
"""

INSERT_AUDIT_SQL = """
    INSERT INTO export_audit_log
        (logged_at, window_id, cursor_ts, records_fetched, records_saved, last_record_id, status)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
"""


@dataclass(frozen=True)
class AuditEntry:
    timestamp: datetime
    window_id: str
    cursor: str
    records_fetched: int
    records_saved: int
    last_record_id: Optional[str]
    status: str


@dataclass(frozen=True)
class ReportRecord:
    window_id: str
    location: str
    notified_at: Optional[datetime] = None
    row_count: int = 0
    completed_at: Optional[datetime] = None

    @property
    def published(self) -> bool:
        return self.completed_at is not None


class ExportStore:
    """
    Export state on one PostgreSQL connection.

    Every method commits its own transaction, so each read sees the latest
    committed write from any process.
    """

    def __init__(self, conn):
        self.conn = conn

    def _execute(self, query, params=None, fetch=None):
        cursor = self.conn.cursor()
        try:
            cursor.execute(query, params)
            if fetch == "one":
                result = cursor.fetchone()
            elif fetch == "all":
                result = cursor.fetchall()
            else:
                result = cursor.rowcount
            self.conn.commit()
            return result
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Store operation failed: {e}") from e
        finally:
            cursor.close()

    def rollback(self):
        """Discard any uncommitted work (used before logging a failure)."""
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            raise PersistenceError(f"Rollback failed: {e}") from e

    # --- Checkpoints ---

    def read_checkpoint(self, window_id: str) -> Optional[int]:
        row = self._execute(
            "SELECT cursor_ts FROM export_checkpoints WHERE window_id = %s",
            (window_id,),
            fetch="one",
        )
        return int(row[0]) if row else None

    def write_checkpoint(self, window_id: str, cursor: int):
        """Upsert the cursor for a window; the stored value never moves backwards."""
        self._execute(UPSERT_CHECKPOINT_SQL, (window_id, int(cursor)))

    def clear_checkpoint(self, window_id: str):
        self._execute("DELETE FROM export_checkpoints WHERE window_id = %s", (window_id,))

    # --- Staging rows ---

    def commit_page(self, window_id: str, rows: List[EnrichedRow], cursor: int) -> int:
        """
        Append a page of rows and advance the checkpoint in one transaction.

        Rows already staged for the window (same ticket id) are skipped, so a
        page re-fetched after a crash does not produce duplicates.

        Args:
            window_id: Export window identifier
            rows: Enriched rows in arrival order
            cursor: New checkpoint value

        Returns:
            Number of rows actually inserted
        """
        cursor_obj = self.conn.cursor()
        try:
            inserted = 0
            if rows:
                values = [
                    (window_id, row.record_id, row.created_at, row.requester_email,
                     row.channel, row.subject, row.body_digest)
                    for row in rows
                ]
                result = execute_values(
                    cursor_obj,
                    """
                    INSERT INTO export_staging_rows
                        (window_id, ticket_id, created_at, requester_email, channel, subject, body_digest)
                    VALUES %s
                    ON CONFLICT (window_id, ticket_id) DO NOTHING
                    RETURNING ticket_id
                    """,
                    values,
                    fetch=True,
                )
                inserted = len(result)
            cursor_obj.execute(UPSERT_CHECKPOINT_SQL, (window_id, int(cursor)))
            self.conn.commit()
            return inserted
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Could not persist page for {window_id} at cursor {cursor}: {e}") from e
        finally:
            cursor_obj.close()

    def fetch_staging_rows(self, window_id: str) -> List[EnrichedRow]:
        rows = self._execute(
            """
            SELECT ticket_id, created_at, requester_email, channel, subject, body_digest
            FROM export_staging_rows
            WHERE window_id = %s
            ORDER BY seq
            """,
            (window_id,),
            fetch="all",
        )
        return [EnrichedRow(*row) for row in rows]

    def count_staging_rows(self, window_id: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) FROM export_staging_rows WHERE window_id = %s",
            (window_id,),
            fetch="one",
        )
        return int(row[0])

    # --- Audit log ---

    def append_audit(self, entry: AuditEntry):
        self._execute(INSERT_AUDIT_SQL, _audit_params(entry))

    def fetch_audit_log(self, window_id: str) -> List[AuditEntry]:
        rows = self._execute(
            """
            SELECT logged_at, window_id, cursor_ts, records_fetched, records_saved, last_record_id, status
            FROM export_audit_log
            WHERE window_id = %s
            ORDER BY id
            """,
            (window_id,),
            fetch="all",
        )
        return [AuditEntry(*row) for row in rows]

    # --- Reports ---

    def get_report(self, window_id: str) -> Optional[ReportRecord]:
        row = self._execute(
            """
            SELECT window_id, location, notified_at, row_count, completed_at
            FROM export_reports
            WHERE window_id = %s
            """,
            (window_id,),
            fetch="one",
        )
        return ReportRecord(*row) if row else None

    def save_report(self, window_id: str, location: str, row_count: int = 0):
        self._execute(
            """
            INSERT INTO export_reports (window_id, location, row_count)
            VALUES (%s, %s, %s)
            ON CONFLICT (window_id) DO UPDATE SET
                location = EXCLUDED.location,
                row_count = EXCLUDED.row_count
            """,
            (window_id, location, int(row_count)),
        )

    def add_report_grant(self, window_id: str, recipient: str) -> bool:
        """Records access for a recipient; returns False if it was already granted."""
        rowcount = self._execute(
            """
            INSERT INTO export_report_grants (window_id, recipient)
            VALUES (%s, %s)
            ON CONFLICT (window_id, recipient) DO NOTHING
            """,
            (window_id, recipient),
        )
        return rowcount == 1

    def fetch_report_grants(self, window_id: str) -> List[str]:
        rows = self._execute(
            """
            SELECT recipient FROM export_report_grants
            WHERE window_id = %s
            ORDER BY granted_at, recipient
            """,
            (window_id,),
            fetch="all",
        )
        return [row[0] for row in rows]

    def mark_report_notified(self, window_id: str):
        self._execute(
            "UPDATE export_reports SET notified_at = %s WHERE window_id = %s",
            (datetime.now(timezone.utc), window_id),
        )

    # --- Window lifecycle ---

    def reset_window(self, window_id: str):
        """Remove all state for a window (fresh run or explicit reset)."""
        cursor = self.conn.cursor()
        try:
            for table in ("export_staging_rows", "export_audit_log", "export_report_grants",
                          "export_reports", "export_checkpoints"):
                cursor.execute(f"DELETE FROM {table} WHERE window_id = %s", (window_id,))
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Could not reset state for {window_id}: {e}") from e
        finally:
            cursor.close()

    def complete_window(self, window_id: str, final_entry: AuditEntry):
        """
        Close a published window in one transaction.

        Clears staging rows and the checkpoint, stamps the report as completed
        and appends the final audit entry. Either all of it is committed or
        none of it, so a failure leaves the window ready for another
        finalization attempt.
        """
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM export_staging_rows WHERE window_id = %s", (window_id,))
            cursor.execute("DELETE FROM export_checkpoints WHERE window_id = %s", (window_id,))
            cursor.execute(
                "UPDATE export_reports SET completed_at = %s WHERE window_id = %s",
                (datetime.now(timezone.utc), window_id),
            )
            cursor.execute(INSERT_AUDIT_SQL, _audit_params(final_entry))
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Could not clear state for {window_id}: {e}") from e
        finally:
            cursor.close()


def _audit_params(entry: AuditEntry) -> tuple:
    return (entry.timestamp, entry.window_id, entry.cursor, entry.records_fetched,
            entry.records_saved, entry.last_record_id, entry.status)
