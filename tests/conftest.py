"""
Pytest fixtures for the Zendesk export tests.

Provides:
- In-memory stand-ins for the export store, the Zendesk client and the mailer
- An ExportConfig built without Hydra or environment variables
- Ticket/comment factories
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from zendesk_export.config import ExportConfig, ExportSettings, PathsConfig, ZendeskConfig
from zendesk_export.errors import PersistenceError, UpstreamError
from zendesk_export.extract import Page
from zendesk_export.load import ReportRecord


# ============================================================================
# Fakes
# ============================================================================

class InMemoryExportStore:
    """Mirrors ExportStore semantics on plain Python structures."""

    def __init__(self):
        self.checkpoints = {}
        self.staging = {}
        self.audit = []
        self.reports = {}
        self.grants = set()
        self.grant_order = []
        self.checkpoint_history = []
        self.fail_commit_page = False
        self.fail_complete_window = False
        self.rollbacks = 0

    def read_checkpoint(self, window_id):
        return self.checkpoints.get(window_id)

    def write_checkpoint(self, window_id, cursor):
        current = self.checkpoints.get(window_id)
        value = cursor if current is None else max(current, cursor)
        self.checkpoints[window_id] = value
        self.checkpoint_history.append((window_id, value))

    def clear_checkpoint(self, window_id):
        self.checkpoints.pop(window_id, None)

    def commit_page(self, window_id, rows, cursor):
        if self.fail_commit_page:
            raise PersistenceError("disk full")
        staged = self.staging.setdefault(window_id, [])
        known = {row.record_id for row in staged}
        inserted = 0
        for row in rows:
            if row.record_id not in known:
                staged.append(row)
                known.add(row.record_id)
                inserted += 1
        self.write_checkpoint(window_id, cursor)
        return inserted

    def fetch_staging_rows(self, window_id):
        return list(self.staging.get(window_id, []))

    def count_staging_rows(self, window_id):
        return len(self.staging.get(window_id, []))

    def append_audit(self, entry):
        self.audit.append(entry)

    def audit_statuses(self, window_id=None):
        return [entry.status for entry in self.audit if window_id is None or entry.window_id == window_id]

    def get_report(self, window_id):
        return self.reports.get(window_id)

    def save_report(self, window_id, location, row_count=0):
        existing = self.reports.get(window_id)
        if existing:
            self.reports[window_id] = replace(existing, location=location, row_count=row_count)
        else:
            self.reports[window_id] = ReportRecord(window_id, location, row_count=row_count)

    def add_report_grant(self, window_id, recipient):
        key = (window_id, recipient)
        if key in self.grants:
            return False
        self.grants.add(key)
        self.grant_order.append(key)
        return True

    def fetch_report_grants(self, window_id):
        return [recipient for wid, recipient in self.grant_order if wid == window_id]

    def mark_report_notified(self, window_id):
        self.reports[window_id] = replace(self.reports[window_id], notified_at=datetime.now(timezone.utc))

    def reset_window(self, window_id):
        self.staging.pop(window_id, None)
        self.audit = [entry for entry in self.audit if entry.window_id != window_id]
        self.reports.pop(window_id, None)
        self.grants = {grant for grant in self.grants if grant[0] != window_id}
        self.grant_order = [grant for grant in self.grant_order if grant[0] != window_id]
        self.checkpoints.pop(window_id, None)

    def complete_window(self, window_id, final_entry):
        if self.fail_complete_window:
            raise PersistenceError("could not clear state")
        self.staging.pop(window_id, None)
        self.checkpoints.pop(window_id, None)
        if window_id in self.reports:
            self.reports[window_id] = replace(self.reports[window_id], completed_at=datetime.now(timezone.utc))
        self.audit.append(final_entry)

    def rollback(self):
        self.rollbacks += 1


class FakeZendeskClient:
    """Serves pages keyed by the requested cursor, plus users and comments."""

    def __init__(self, pages=None, users=None, comments=None):
        self.pages = dict(pages or {})
        self.users = dict(users or {})
        self.comments = dict(comments or {})
        self.failing_users = set()
        self.failing_comments = set()
        self.page_requests = []
        self.user_requests = []

    def fetch_page(self, cursor):
        self.page_requests.append(cursor)
        if cursor not in self.pages:
            raise UpstreamError(f"no page at {cursor}", status_code=500, body="boom")
        return self.pages[cursor]

    def get_user(self, user_id):
        self.user_requests.append(user_id)
        if user_id in self.failing_users:
            raise UpstreamError(f"user {user_id} lookup failed", status_code=404, body="not found")
        return self.users.get(user_id, {})

    def list_comments(self, ticket_id):
        if ticket_id in self.failing_comments:
            raise UpstreamError(f"comments for {ticket_id} failed", status_code=500, body="boom")
        return list(self.comments.get(ticket_id, []))


class FakeNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.attachments = []
        self.fail = fail

    def send_report_ready(self, window_id, location, recipients, attachment_path=None):
        if self.fail:
            raise OSError("SMTP connection refused")
        self.sent.append((window_id, location, list(recipients)))
        self.attachments.append(attachment_path)


# ============================================================================
# Helpers
# ============================================================================

def iso(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def epoch(year, month, day, hour=0, minute=0, second=0):
    return int(datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc).timestamp())


def make_ticket(ticket_id, created_at, requester_id=100, channel="email", subject=None):
    return {
        "id": ticket_id,
        "created_at": created_at,
        "requester_id": requester_id,
        "via": {"channel": channel},
        "subject": subject or f"Ticket {ticket_id}",
        "status": "open",
    }


def make_page(records, new_cursor, end_of_feed=False):
    next_page = None if end_of_feed else f"https://acme.zendesk.com/api/v2/incremental/tickets.json?start_time={new_cursor}"
    return Page(records=list(records), new_cursor=new_cursor, end_of_feed=end_of_feed, next_page=next_page)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store():
    return InMemoryExportStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def export_config(tmp_path):
    return ExportConfig(
        zendesk=ZendeskConfig(subdomain="acme", email="ops@acme.test", api_token="secret"),
        export=ExportSettings(recipients=("alice@acme.test", "bob@acme.test")),
        paths=PathsConfig(reports_dir=str(tmp_path / "reports")),
    )
