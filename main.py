"""
Zendesk Monthly Export: batch entry point

Reads the month from --month or EXPORT_MONTH and runs the export until the
window is drained (or the page budget is used up). Without a month the
script logs a message and exits 0 without doing anything.

Exit codes: 0 on success or no-op, 1 on failure.
"""

import argparse
import sys

from zendesk_export.config import load_config
from zendesk_export.errors import ExportLockedError
from zendesk_export.pipeline import run_export


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the Zendesk monthly export")
    parser.add_argument("--month", help="Month to export (YYYY-MM); defaults to EXPORT_MONTH")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop checkpoint, staging rows and audit log for the month before running"
    )
    parser.add_argument("overrides", nargs="*", help="Hydra config overrides, e.g. export.max_pages_per_run=10")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        config = load_config(args.overrides)
    except Exception as e:
        print(f"❌ ERROR: Could not load configuration: {e}")
        return 1

    month = args.month or config.export.month
    if not month:
        print("No EXPORT_MONTH provided. Exiting.")
        return 0

    try:
        outcome = run_export(config, month=month, reset=args.reset)
    except ExportLockedError as e:
        print(f"-> {e} Nothing to do.")
        return 0
    except Exception as e:
        print(f"❌ ERROR: {e}")
        return 1

    if outcome.completed:
        print(f"\n✅ Export for {outcome.window_id} complete: {outcome.total:,} tickets -> {outcome.report_location}")
    else:
        print(f"\n-> Export for {outcome.window_id} in progress: {outcome.processed:,} saved this run, "
              f"{outcome.total:,} staged in total.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
