"""Tests for the window export controller (filter, persist, checkpoint loop)."""

import threading
import time

import pytest

from conftest import FakeZendeskClient, epoch, iso, make_page, make_ticket
from utils.extract_utils import get_month_window
from utils.transform_utils import parse_iso_timestamp as epoch_of
from zendesk_export.controller import ExportState, WindowExportController
from zendesk_export.errors import PersistenceError, UpstreamError
from zendesk_export.transform import EnrichedRow


@pytest.fixture
def window():
    return get_month_window("2025-12")


def run(window, store, client, **kwargs):
    return WindowExportController(window, store, client, **kwargs).run()


def test_fresh_window_scenario(window, store):
    """Seed at window start, admit only in-window tickets, finish once past the end."""
    a = make_ticket(1, iso(2025, 12, 1, 0, 0, 5))
    b = make_ticket(2, iso(2026, 1, 1))
    end_time = epoch(2026, 1, 1)
    client = FakeZendeskClient(pages={window.start: make_page([a, b], end_time, end_of_feed=True)})

    result = run(window, store, client)

    assert client.page_requests == [epoch(2025, 12, 1)]
    assert [row.record_id for row in store.staging["2025-12"]] == [1]
    assert store.checkpoints["2025-12"] == end_time
    assert result.window_complete is True
    assert result.state == ExportState.DONE
    assert result.records_fetched == 2
    assert result.records_saved == 1
    assert result.last_record_id == 1
    assert result.fresh_run is True


def test_boundaries_are_half_open(window, store):
    tickets = [
        make_ticket(1, iso(2025, 11, 30, 23, 59, 59)),
        make_ticket(2, iso(2025, 12, 1)),
        make_ticket(3, iso(2025, 12, 31, 23, 59, 59)),
        make_ticket(4, iso(2026, 1, 1)),
    ]
    client = FakeZendeskClient(pages={window.start: make_page(tickets, window.end + 10, end_of_feed=True)})

    run(window, store, client)

    assert [row.record_id for row in store.staging["2025-12"]] == [2, 3]
    assert all(window.contains(epoch_of(row.created_at)) for row in store.staging["2025-12"])


def test_multi_page_loop_advances_checkpoint_monotonically(window, store):
    mid1 = epoch(2025, 12, 10)
    mid2 = epoch(2025, 12, 20)
    client = FakeZendeskClient(pages={
        window.start: make_page([make_ticket(1, iso(2025, 12, 5))], mid1),
        mid1: make_page([], mid2),
        mid2: make_page([make_ticket(2, iso(2025, 12, 25))], window.end + 60),
    })

    result = run(window, store, client)

    assert client.page_requests == [window.start, mid1, mid2]
    cursors = [value for window_id, value in store.checkpoint_history if window_id == "2025-12"]
    assert cursors == sorted(cursors)
    assert cursors[-1] == window.end + 60
    assert result.window_complete is True
    assert result.pages == 3
    assert store.audit_statuses("2025-12") == ["Running", "Running", "Running"]


def test_empty_page_still_advances_checkpoint(window, store):
    nxt = epoch(2025, 12, 2)
    client = FakeZendeskClient(pages={
        window.start: make_page([make_ticket(9, iso(2025, 11, 1))], nxt),
        nxt: make_page([], window.end, end_of_feed=True),
    })

    run(window, store, client)

    assert store.staging.get("2025-12", []) == []
    assert store.checkpoints["2025-12"] == window.end


def test_resume_uses_existing_checkpoint_without_reset(window, store):
    resume_at = epoch(2025, 12, 15)
    store.write_checkpoint("2025-12", resume_at)
    client = FakeZendeskClient(pages={
        resume_at: make_page([make_ticket(5, iso(2025, 12, 16))], window.end, end_of_feed=True),
    })
    result = run(window, store, client)

    assert client.page_requests == [resume_at]
    assert result.fresh_run is False
    assert [row.record_id for row in store.staging["2025-12"]] == [5]


def test_fresh_run_clears_stale_state(window, store):
    stale = EnrichedRow(99, iso(2025, 12, 3), "x@y.test", "email", "old", "")
    store.staging["2025-12"] = [stale]
    store.staging["2025-11"] = [stale]
    client = FakeZendeskClient(pages={window.start: make_page([], window.end, end_of_feed=True)})

    run(window, store, client)

    assert store.staging.get("2025-12", []) == []
    assert store.staging["2025-11"] == [stale]


def test_reinvoking_past_window_end_fetches_nothing(window, store):
    store.write_checkpoint("2025-12", window.end + 5)
    client = FakeZendeskClient()

    result = run(window, store, client)

    assert client.page_requests == []
    assert store.staging.get("2025-12", []) == []
    assert result.window_complete is True
    assert result.pages == 0


def test_end_of_feed_before_window_end_is_not_complete(window, store):
    now_cursor = epoch(2025, 12, 20)
    client = FakeZendeskClient(pages={
        window.start: make_page([make_ticket(1, iso(2025, 12, 2))], now_cursor, end_of_feed=True),
    })

    result = run(window, store, client)

    assert result.feed_exhausted is True
    assert result.window_complete is False
    assert store.checkpoints["2025-12"] == now_cursor


def test_page_budget_bounds_a_pass(window, store):
    c1, c2 = epoch(2025, 12, 5), epoch(2025, 12, 10)
    client = FakeZendeskClient(pages={
        window.start: make_page([make_ticket(1, iso(2025, 12, 2))], c1),
        c1: make_page([make_ticket(2, iso(2025, 12, 6))], c2),
        c2: make_page([], window.end, end_of_feed=True),
    })

    first = run(window, store, client, max_pages=2)
    assert first.pages == 2
    assert first.window_complete is False
    assert first.feed_exhausted is False
    assert store.checkpoints["2025-12"] == c2

    second = run(window, store, client, max_pages=2)
    assert second.window_complete is True
    assert client.page_requests == [window.start, c1, c2]
    assert [row.record_id for row in store.staging["2025-12"]] == [1, 2]


def test_refetched_page_does_not_duplicate_rows(window, store):
    page = make_page([make_ticket(1, iso(2025, 12, 2))], epoch(2025, 12, 5))
    store.write_checkpoint("2025-12", window.start)
    store.staging["2025-12"] = []
    client = FakeZendeskClient(pages={window.start: page})
    WindowExportController(window, store, client, max_pages=1).run()

    # Simulate a crash that lost the checkpoint advance but kept the rows
    store.checkpoints["2025-12"] = window.start
    result = WindowExportController(window, store, client, max_pages=1).run()

    assert [row.record_id for row in store.staging["2025-12"]] == [1]
    assert result.records_saved == 0


def test_persistence_failure_keeps_checkpoint(window, store):
    client = FakeZendeskClient(pages={
        window.start: make_page([make_ticket(1, iso(2025, 12, 2))], epoch(2025, 12, 5)),
    })
    store.fail_commit_page = True

    with pytest.raises(PersistenceError):
        run(window, store, client)

    assert store.checkpoints["2025-12"] == window.start


def test_upstream_failure_propagates_and_keeps_checkpoint(window, store):
    client = FakeZendeskClient(pages={})
    with pytest.raises(UpstreamError):
        run(window, store, client)
    assert store.checkpoints["2025-12"] == window.start


def test_enrichment_failure_is_audited_and_batch_continues(window, store):
    client = FakeZendeskClient(
        pages={window.start: make_page(
            [make_ticket(1, iso(2025, 12, 2), requester_id=100), make_ticket(2, iso(2025, 12, 3), requester_id=200)],
            window.end,
            end_of_feed=True,
        )},
        users={200: {"email": "ok@customer.test"}},
    )
    client.failing_users.add(100)

    run(window, store, client)

    rows = store.staging["2025-12"]
    assert [row.requester_email for row in rows] == ["N/A", "ok@customer.test"]
    warnings = [entry for entry in store.audit if entry.status.startswith("WARN")]
    assert len(warnings) == 1
    assert warnings[0].last_record_id == "1"
    assert "ticket 1" in warnings[0].status


def test_parallel_enrichment_keeps_record_order(window, store):
    class SlowFirstClient(FakeZendeskClient):
        def list_comments(self, ticket_id):
            if ticket_id == 1:
                time.sleep(0.05)
            return [{"author_id": 100, "public": True, "body": f"t{ticket_id} on {threading.current_thread().name}"}]

    tickets = [make_ticket(i, iso(2025, 12, 1, 0, 0, i)) for i in range(1, 6)]
    client = SlowFirstClient(pages={window.start: make_page(tickets, window.end, end_of_feed=True)})

    run(window, store, client, enrich_workers=4)

    assert [row.record_id for row in store.staging["2025-12"]] == [1, 2, 3, 4, 5]


def test_unparseable_created_at_is_skipped(window, store):
    client = FakeZendeskClient(pages={window.start: make_page(
        [{"id": 1, "created_at": None}, make_ticket(2, iso(2025, 12, 2))], window.end, end_of_feed=True,
    )})
    run(window, store, client)
    assert [row.record_id for row in store.staging["2025-12"]] == [2]
