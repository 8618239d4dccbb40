from datetime import datetime, timezone
from typing import List, Optional


def parse_iso_timestamp(ts_str) -> Optional[int]:
    """
    Parse ISO timestamp string to Unix timestamp.
    Handles formats like: '2025-09-05T09:40:36Z', '2025-08-26 03:52:27+00:00'
    Timestamps without an offset are treated as UTC.

    Args:
        ts_str: ISO timestamp string

    Returns:
        Unix timestamp (seconds since epoch), or None if parsing fails
    """
    if not ts_str or not isinstance(ts_str, str):
        return None

    try:
        # Try parsing with Z suffix
        if ts_str.endswith('Z'):
            dt = datetime.fromisoformat(ts_str[:-1] + '+00:00')
        else:
            dt = datetime.fromisoformat(ts_str.replace(' ', 'T'))

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)

        return int(dt.timestamp())
    except (ValueError, AttributeError):
        return None


def split_recipients(value) -> List[str]:
    """
    Splits a comma-separated recipient list, dropping blanks and duplicates.

    Args:
        value: Comma-separated string, list of strings, or None

    Returns:
        List of email addresses in their original order
    """
    if not value:
        return []
    if isinstance(value, str):
        candidates = value.split(",")
    else:
        candidates = list(value)

    recipients = []
    for candidate in candidates:
        email = str(candidate).strip()
        if email and email not in recipients:
            recipients.append(email)
    return recipients
