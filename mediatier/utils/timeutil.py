"""Time helpers: naive UTC timestamps, as stored in SQLite."""
import re
from datetime import datetime, timezone
from typing import Optional, Union

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def utcnow() -> datetime:
    """Naive UTC now (the database stores naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from an *arr / Jellyfin payload.

    Jellyfin sends 7 fractional digits ("2024-05-01T20:11:03.1234567Z"),
    truncated here to microseconds. Returns None on anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if not text:
        return None
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1), text)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # 0001-01-01 is .NET's "no value"
    if parsed.year <= 1:
        return None
    return to_naive_utc(parsed)
