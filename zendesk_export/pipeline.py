"""
Export Pipeline

Entry-point-agnostic orchestration shared by the batch script, the Prefect
flow and the HTTP trigger: resolve the window, take the window lock, run one
controller pass and finalize when the window is drained.
"""

from dataclasses import dataclass
from typing import Optional

from utils.db_utils import ensure_export_tables, get_db_connection, window_lock
from utils.extract_utils import get_month_window
from zendesk_export.audit import error_status, log_progress
from zendesk_export.controller import WindowExportController
from zendesk_export.errors import ExportError
from zendesk_export.extract import ZendeskClient
from zendesk_export.finalize import finalize_window
from zendesk_export.load import ExportStore
from zendesk_export.notify import SmtpNotifier


@dataclass
class ExportOutcome:
    window_id: str
    processed: int
    total: int
    completed: bool
    cursor: Optional[int] = None
    feed_exhausted: bool = False
    report_location: Optional[str] = None

    @property
    def more_work(self) -> bool:
        """True when another pass can make progress right away."""
        return not self.completed and not self.feed_exhausted

    def as_status(self) -> dict:
        return {"processed": self.processed, "total": self.total, "completed": self.completed}


def run_export_pass(config, window, store, client, notifier, reset=False) -> ExportOutcome:
    """
    Run one bounded pass for a window (caller holds the window lock).

    Any failure is recorded as a single "ERROR: <message>" audit row and then
    re-raised.

    Args:
        config: ExportConfig
        window: ExportWindow
        store: ExportStore
        client: ZendeskClient
        notifier: SmtpNotifier (or compatible)
        reset: Drop all existing state for the window first

    Returns:
        ExportOutcome
    """
    try:
        if reset:
            print(f"-> Resetting all export state for {window.id}")
            store.reset_window(window.id)

        controller = WindowExportController(
            window,
            store,
            client,
            max_pages=config.export.max_pages_per_run,
            enrich_workers=config.export.enrich_workers,
        )
        result = controller.run()

        if result.already_published:
            return ExportOutcome(
                window_id=window.id,
                processed=0,
                total=result.published_report.row_count,
                completed=True,
                report_location=result.published_report.location,
            )

        if not result.window_complete:
            return ExportOutcome(
                window_id=window.id,
                processed=result.records_saved,
                total=store.count_staging_rows(window.id),
                completed=False,
                cursor=result.cursor,
                feed_exhausted=result.feed_exhausted,
            )

        finalized = finalize_window(
            window, store, config, notifier,
            records_fetched=result.records_fetched,
            records_saved=result.records_saved,
        )
        return ExportOutcome(
            window_id=window.id,
            processed=result.records_saved,
            total=finalized.row_count,
            completed=True,
            cursor=result.cursor,
            feed_exhausted=result.feed_exhausted,
            report_location=finalized.location,
        )
    except Exception as e:
        print(f"❌ ERROR: {e}")
        _log_failure(store, window.id, e)
        raise


def run_export(config, month=None, reset=False) -> ExportOutcome:
    """
    Open the store, lock the window and run one pass.

    Args:
        config: ExportConfig
        month: YYYY-MM; None means the previous calendar month
        reset: Drop all existing state for the window first

    Returns:
        ExportOutcome

    Raises:
        ValidationError: Malformed month (raised before any state is touched)
        ExportLockedError: Another worker is exporting the same window
        ExportError: Any other export failure
    """
    window = get_month_window(month)
    config.validate()
    print(f"\n{'='*60}")
    print(f"Zendesk export for {window.id} (window {window.start} -> {window.end})")
    print(f"{'='*60}")

    conn = get_db_connection(config.db)
    try:
        ensure_export_tables(conn)
        with window_lock(conn, window.id):
            return run_export_pass(
                config,
                window,
                ExportStore(conn),
                ZendeskClient.from_config(config.zendesk),
                SmtpNotifier.from_config(config.smtp),
                reset=reset,
            )
    finally:
        conn.close()


def _log_failure(store, window_id, error):
    try:
        store.rollback()
        log_progress(store, window_id, "UNKNOWN", 0, 0, "FAIL", status=error_status(error))
    except ExportError as log_error:
        print(f"❌ Could not record failure in the audit log: {log_error}")
