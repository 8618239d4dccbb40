"""
Zendesk Monthly Export Flow

Prefect flow that drives the export for one month as a series of bounded
passes. Each pass is an independent task run that resumes from the committed
checkpoint, so a failed pass can simply be retried.

Flow Structure:
1. Resolve the window once (month parameter, EXPORT_MONTH, or previous month)
2. run_export_pass until the report is published, the feed is exhausted
   before the month has ended, or max_runs is reached
"""

from prefect import flow, task

from utils.extract_utils import get_month_window
from zendesk_export.config import load_config
from zendesk_export.pipeline import run_export


@task(name="run_export_pass", log_prints=True)
def run_export_pass_task(month: str, reset: bool = False) -> dict:
    """Run one export pass for the month and return its outcome."""
    config = load_config()
    outcome = run_export(config, month=month, reset=reset)
    return {
        **outcome.as_status(),
        "window_id": outcome.window_id,
        "cursor": outcome.cursor,
        "more_work": outcome.more_work,
        "report_location": outcome.report_location,
    }


@flow(name="zendesk_monthly_export", log_prints=True)
def zendesk_monthly_export(month: str = None, reset: bool = False, max_runs: int = 50):
    """
    Main export flow.

    Args:
        month: YYYY-MM to export. Defaults to EXPORT_MONTH, then to the
               previous calendar month.
        reset: If True, drop existing state for the month before the first pass.
        max_runs: Upper bound on passes in one flow run.
    """
    config = load_config()
    window = get_month_window(month or config.export.month)

    print("=" * 80)
    print(f"Starting Zendesk monthly export for {window.id}")
    print("=" * 80)

    result = None
    for run_number in range(1, max_runs + 1):
        print(f"\n[Pass {run_number}] Exporting {window.id}...")
        result = run_export_pass_task(window.id, reset=reset and run_number == 1)
        if not result["more_work"]:
            break

    if result and result["completed"]:
        print(f"\n✅ Export for {window.id} published: {result['report_location']}")
    elif result and result["more_work"]:
        print(f"\n⚠️  Stopped after {max_runs} passes; the next flow run resumes at cursor {result['cursor']}.")
    else:
        print(f"\n-> {window.id} is drained up to now; it will be published once the month has ended.")
    return result


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Run the Zendesk monthly export flow")
    parser.add_argument("--month", help="Month to export (YYYY-MM)")
    parser.add_argument("--reset", action="store_true", help="Drop existing state for the month first")
    parser.add_argument("--max-runs", type=int, default=50, help="Maximum number of passes")
    args = parser.parse_args()

    zendesk_monthly_export(month=args.month, reset=args.reset, max_runs=args.max_runs)
