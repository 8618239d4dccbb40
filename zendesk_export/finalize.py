"""
Report Finalization

Runs once the controller has drained a window:
1. Write the report spreadsheet (header + staging rows) under a name derived
   from the window id
2. Record an access grant for every configured recipient
3. Email everyone holding a grant, with the workbook attached and its
   location in the body
4. In one transaction: clear staging rows and the checkpoint, stamp the
   report as completed and log "Export Complete"

Finalization is re-entrant. Until step 4 succeeds the checkpoint stays in
place, so the next run lands here again instead of re-fetching the month.
Once it succeeds the window is published and later runs leave it alone. A
retry rewrites the same file, skips grants that were already recorded, and
does not resend a notification that was recorded as sent. A crash between
sending the email and recording it means the email goes out again
(at-least-once).
"""

import os
from dataclasses import dataclass
from urllib.parse import quote

import pandas as pd

from zendesk_export.audit import STATUS_COMPLETE, audit_entry, print_entry
from zendesk_export.errors import FinalizationError
from zendesk_export.transform import REPORT_HEADER

REPORT_NAME_TEMPLATE = "Zendesk Export - {window_id}"


@dataclass
class FinalizeResult:
    window_id: str
    location: str
    row_count: int
    grants_added: int
    notified: bool


def report_filename(window_id: str) -> str:
    return REPORT_NAME_TEMPLATE.format(window_id=window_id) + ".xlsx"


def report_location(path: str, report_base_url=None) -> str:
    """Public location of a report: base URL + file name if configured, else the file path."""
    if report_base_url:
        return f"{report_base_url.rstrip('/')}/{quote(os.path.basename(path))}"
    return os.path.abspath(path)


def write_report(rows, output_path: str) -> str:
    """
    Exports the staging rows to an Excel workbook with a header row.

    Args:
        rows: EnrichedRow objects in staging order
        output_path: Destination .xlsx path (overwritten if present)

    Returns:
        Path to the exported workbook
    """
    df = pd.DataFrame([row.as_report_row() for row in rows], columns=REPORT_HEADER)

    # Ensure output directory exists
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    df.to_excel(output_path, index=False, sheet_name="Tickets")

    print(f"\n✅ Success! Report with {len(df):,} rows saved to: {output_path}")
    return output_path


def finalize_window(window, store, config, notifier, records_fetched=0, records_saved=0) -> FinalizeResult:
    """
    Publish the report for a drained window.

    Args:
        window: ExportWindow that reached its end
        store: ExportStore
        config: ExportConfig (recipients, reports_dir, report_base_url)
        notifier: Object with send_report_ready(window_id, location, recipients, attachment_path)
        records_fetched: Fetched count of the current run, for the audit row
        records_saved: Saved count of the current run, for the audit row

    Returns:
        FinalizeResult

    Raises:
        FinalizationError: If any step fails; the checkpoint is left in place
    """
    print(f"\n--- Finalizing export for {window.id} ---")

    try:
        rows = store.fetch_staging_rows(window.id)
        output_path = os.path.join(config.paths.reports_dir, report_filename(window.id))
        write_report(rows, output_path)
        location = report_location(output_path, config.export.report_base_url)
        store.save_report(window.id, location, row_count=len(rows))

        grants_added = 0
        for recipient in config.export.recipients:
            if store.add_report_grant(window.id, recipient):
                grants_added += 1
                print(f"-> Granted report access to {recipient}")
            else:
                print(f"-> {recipient} already has access, skipping")

        # Everyone granted access gets the report, including grants from earlier attempts
        recipients = store.fetch_report_grants(window.id)
        notified = False
        report = store.get_report(window.id)
        if not recipients:
            print("⚠️  No recipients configured; skipping notification.")
        elif report is not None and report.notified_at is not None:
            print(f"-> Notification for {window.id} already sent at {report.notified_at}, skipping")
        else:
            notifier.send_report_ready(window.id, location, recipients, attachment_path=output_path)
            store.mark_report_notified(window.id)
            notified = True

        final_entry = audit_entry(window.id, "FINAL", records_fetched, records_saved, "DONE", status=STATUS_COMPLETE)
        store.complete_window(window.id, final_entry)
    except Exception as e:
        raise FinalizationError(f"Finalization failed for {window.id}: {e}") from e

    print_entry(final_entry)
    print(f"\n✅ Export for {window.id} complete: {location}")

    return FinalizeResult(
        window_id=window.id,
        location=location,
        row_count=len(rows),
        grants_added=grants_added,
        notified=notified,
    )
