"""
Progress Logger

Appends one audit row per controller iteration and echoes it to stdout.
"""

from datetime import datetime, timezone

from zendesk_export.load import AuditEntry

STATUS_RUNNING = "Running"
STATUS_COMPLETE = "Export Complete"


def audit_entry(window_id, cursor, records_fetched, records_saved, last_record_id, status=STATUS_RUNNING) -> AuditEntry:
    """Build an audit log entry stamped with the current UTC time."""
    return AuditEntry(
        timestamp=datetime.now(timezone.utc),
        window_id=window_id,
        cursor=str(cursor),
        records_fetched=int(records_fetched),
        records_saved=int(records_saved),
        last_record_id=None if last_record_id is None else str(last_record_id),
        status=status,
    )


def print_entry(entry: AuditEntry):
    print(f"   [{entry.window_id}] {entry.status}: cursor={entry.cursor}, fetched={entry.records_fetched:,}, "
          f"saved={entry.records_saved:,}, last_ticket={entry.last_record_id}")


def log_progress(store, window_id, cursor, records_fetched, records_saved, last_record_id, status=STATUS_RUNNING):
    """
    Record one audit log entry.

    Args:
        store: ExportStore (or any object with append_audit)
        window_id: Export window identifier
        cursor: Checkpoint after this iteration (or a marker such as "UNKNOWN")
        records_fetched: Cumulative records fetched in this run
        records_saved: Cumulative rows saved in this run
        last_record_id: Id of the last admitted ticket, if any
        status: "Running", "WARN: ...", "Export Complete" or "ERROR: ..."

    Returns:
        The AuditEntry that was written
    """
    entry = audit_entry(window_id, cursor, records_fetched, records_saved, last_record_id, status=status)
    store.append_audit(entry)
    print_entry(entry)
    return entry


def error_status(error) -> str:
    return f"ERROR: {error}"
