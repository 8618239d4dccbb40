"""
Window Export Controller

Drives the incremental ticket feed for one export window:

    SEEDING -> FETCHING -> FILTERING -> PERSISTING -> CHECKPOINTING -> (loop | DONE)

Each page's rows and the advanced checkpoint are committed together, strictly
after enrichment finished, so an interrupted run resumes from the last page
that was fully persisted. A single call is a bounded unit of work: the caller
re-invokes it until `window_complete` is reported.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from utils.extract_utils import format_timestamp
from utils.transform_utils import parse_iso_timestamp
from zendesk_export.audit import log_progress
from zendesk_export.load import ReportRecord
from zendesk_export.transform import EnrichmentResult, TicketEnricher


class ExportState(Enum):
    SEEDING = "seeding"
    FETCHING = "fetching"
    FILTERING = "filtering"
    PERSISTING = "persisting"
    CHECKPOINTING = "checkpointing"
    DONE = "done"


@dataclass
class PassResult:
    window_id: str
    cursor: Optional[int]
    pages: int
    records_fetched: int
    records_saved: int
    last_record_id: Optional[int]
    fresh_run: bool
    feed_exhausted: bool
    window_complete: bool
    state: ExportState
    published_report: Optional[ReportRecord] = None

    @property
    def already_published(self) -> bool:
        return self.published_report is not None


class WindowExportController:
    """
    Runs one pass of the export for a window.

    Args:
        window: ExportWindow being exported
        store: ExportStore holding checkpoints, staging rows and the audit log
        client: ZendeskClient (fetch_page, get_user, list_comments)
        max_pages: Stop after this many pages (0 = until done)
        enrich_workers: Threads used to enrich the admitted tickets of a page
    """

    def __init__(self, window, store, client, max_pages=0, enrich_workers=1, enricher=None):
        self.window = window
        self.store = store
        self.client = client
        self.max_pages = max_pages
        self.enrich_workers = max(1, enrich_workers)
        self.enricher = enricher or TicketEnricher(client)
        self.state = ExportState.SEEDING
        self.records_fetched = 0
        self.records_saved = 0
        self.last_record_id = None

    def _transition(self, state: ExportState):
        self.state = state

    def published_report(self) -> Optional[ReportRecord]:
        """The report record if this window was already published, else None."""
        report = self.store.get_report(self.window.id)
        if report is not None and report.published:
            return report
        return None

    def seed(self):
        """
        Returns (cursor, fresh_run).

        A window without a checkpoint starts over: any staging rows, audit
        entries and report bookkeeping left for the same window are removed
        and the checkpoint is seeded to the window start. Callers check
        `published_report()` first; a published window is never reset here.
        """
        self._transition(ExportState.SEEDING)
        cursor = self.store.read_checkpoint(self.window.id)
        if cursor is None:
            print(f"-> Fresh run detected for {self.window.id}. Clearing staging rows and audit log.")
            self.store.reset_window(self.window.id)
            self.store.write_checkpoint(self.window.id, self.window.start)
            return self.window.start, True

        if cursor < self.window.start:
            print(f"⚠️  Checkpoint {cursor} is before the window start, moving it to {self.window.start}")
            self.store.write_checkpoint(self.window.id, self.window.start)
            cursor = self.window.start
        return cursor, False

    def filter_records(self, records: List[dict]) -> List[dict]:
        """Keeps tickets created inside the window; everything else is dropped."""
        self._transition(ExportState.FILTERING)
        admitted = []
        for record in records:
            created_ts = parse_iso_timestamp(record.get("created_at"))
            if created_ts is None:
                print(f"⚠️  Skipping ticket {record.get('id')}: unparseable created_at {record.get('created_at')!r}")
                continue
            if self.window.contains(created_ts):
                admitted.append(record)
        return admitted

    def enrich_records(self, records: List[dict]) -> List[EnrichmentResult]:
        """Enriches tickets, returning results in the same order as `records`."""
        self._transition(ExportState.PERSISTING)
        if self.enrich_workers > 1 and len(records) > 1:
            with ThreadPoolExecutor(max_workers=self.enrich_workers) as executor:
                return list(executor.map(self.enricher.enrich, records))
        return [self.enricher.enrich(record) for record in records]

    def run(self) -> PassResult:
        if self.store.read_checkpoint(self.window.id) is None:
            report = self.published_report()
            if report is not None:
                print(f"-> Window {self.window.id} was already published to {report.location}. Nothing to do.")
                self._transition(ExportState.DONE)
                return PassResult(
                    window_id=self.window.id,
                    cursor=None,
                    pages=0,
                    records_fetched=0,
                    records_saved=0,
                    last_record_id=None,
                    fresh_run=False,
                    feed_exhausted=False,
                    window_complete=True,
                    state=self.state,
                    published_report=report,
                )

        cursor, fresh_run = self.seed()
        print(f"-> Current checkpoint for {self.window.id}: {cursor} ({format_timestamp(cursor)})")

        pages = 0
        feed_exhausted = False
        while cursor < self.window.end:
            if self.max_pages and pages >= self.max_pages:
                print(f"-> Page budget of {self.max_pages} reached; stopping this pass at cursor {cursor}.")
                break

            self._transition(ExportState.FETCHING)
            page = self.client.fetch_page(cursor)
            self.records_fetched += len(page.records)

            admitted = self.filter_records(page.records)
            results = self.enrich_records(admitted)
            rows = [result.row for result in results]

            self._transition(ExportState.CHECKPOINTING)
            self.records_saved += self.store.commit_page(self.window.id, rows, page.new_cursor)
            cursor = page.new_cursor
            if admitted:
                self.last_record_id = admitted[-1].get("id")
            pages += 1

            for result in results:
                for error in result.errors:
                    print(f"⚠️  Enrichment degraded for ticket {error.record_id}: {error}")
                    log_progress(self.store, self.window.id, cursor, self.records_fetched, self.records_saved,
                                 error.record_id, status=f"WARN: enrichment failed for {error}")

            log_progress(self.store, self.window.id, cursor, self.records_fetched, self.records_saved,
                         self.last_record_id)

            if page.end_of_feed:
                feed_exhausted = True
                break

        window_complete = cursor >= self.window.end
        if window_complete or feed_exhausted:
            self._transition(ExportState.DONE)

        if window_complete:
            print(f"\n✅ Window {self.window.id} fully drained (cursor {cursor} >= end {self.window.end}).")
        elif feed_exhausted:
            print(f"\n-> End of stream reached at {format_timestamp(cursor)}; window {self.window.id} "
                  f"ends {format_timestamp(self.window.end)}. Waiting for the month to finish.")

        return PassResult(
            window_id=self.window.id,
            cursor=cursor,
            pages=pages,
            records_fetched=self.records_fetched,
            records_saved=self.records_saved,
            last_record_id=self.last_record_id,
            fresh_run=fresh_run,
            feed_exhausted=feed_exhausted,
            window_complete=window_complete,
            state=self.state,
        )
