import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from zendesk_export.errors import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class ExportWindow:
    """Half-open [start, end) interval of UNIX timestamps for one calendar month."""
    id: str
    start: int
    end: int

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp < self.end


def previous_month_id(now: Optional[datetime] = None) -> str:
    """Returns the YYYY-MM identifier of the calendar month before `now` (UTC)."""
    now_utc = now or datetime.now(timezone.utc)
    if now_utc.month == 1:
        return f"{now_utc.year - 1:04d}-12"
    return f"{now_utc.year:04d}-{now_utc.month - 1:02d}"


def get_month_window(month_id: Optional[str] = None, now: Optional[datetime] = None) -> ExportWindow:
    """
    Calculates the UTC export window for a calendar month.
    The Zendesk API uses UTC, so we must be precise.

    Args:
        month_id: Month identifier in YYYY-MM format. None or empty means the
                  previous calendar month relative to `now`.
        now: Optional reference time (defaults to the current UTC time)

    Returns:
        ExportWindow with start inclusive and end exclusive

    Raises:
        ValidationError: If month_id is not a valid YYYY-MM month
    """
    if not month_id:
        month_id = previous_month_id(now)

    match = MONTH_PATTERN.match(str(month_id).strip())
    if not match:
        raise ValidationError(f"Invalid month '{month_id}'. Expected format YYYY-MM.")

    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1970:
        raise ValidationError(f"Invalid month '{month_id}'. Expected format YYYY-MM.")

    start = datetime(year, month, 1, tzinfo=timezone.utc)
    # December rolls over into January of the next year
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)

    return ExportWindow(id=f"{year:04d}-{month:02d}", start=int(start.timestamp()), end=int(end.timestamp()))


def format_timestamp(timestamp) -> str:
    """Formats a UNIX timestamp for log output."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')


def parse_retry_after(value, default=60):
    """Parses a Retry-After header value in seconds, falling back to `default`."""
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return default
