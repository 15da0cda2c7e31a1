"""
Timestamp and identifier helpers.

Timestamps are ISO-8601 UTC strings with millisecond precision and a
trailing 'Z', so lexical order equals chronological order.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as e.g. '2024-05-01T10:20:30.123Z'."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when it is not one."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: Optional[str], clock: Clock = utc_now) -> str:
    """
    Return "now", bumped past `previous` when the clock has not moved on.

    Guarantees the result sorts strictly after `previous` whenever
    `previous` is a parseable timestamp.
    """
    now = _truncate_to_millis(clock())
    prior = parse_timestamp(previous) if previous else None
    if prior is not None:
        prior = _truncate_to_millis(prior)
        if now <= prior:
            now = prior + timedelta(milliseconds=1)
    return format_timestamp(now)


def _truncate_to_millis(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


def new_id() -> str:
    """Opaque, globally unique identifier."""
    return str(uuid.uuid4())
