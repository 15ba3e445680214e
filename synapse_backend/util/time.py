from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    """UTC ISO-8601 string with Z. Naive datetimes are taken to be UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(utcnow())


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (a trailing Z is accepted). Raises ValueError."""
    s = (value or "").strip()
    if not s:
        raise ValueError("blank timestamp")
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_iso(value: str) -> str:
    return to_iso(parse_iso(value))


def iso_date(dt: datetime) -> str:
    return dt.date().isoformat()


def format_relative_time(value: str | None, now: datetime | None = None) -> str:
    """Short "time ago" label used by the recent-updates feed.

    Just now / 5m ago / 3h ago / 2d ago, then "Mar 4" for anything older than a week.
    """
    if not value:
        return "Some time ago"
    try:
        then = parse_iso(value)
    except ValueError:
        return "Unknown time"
    ref = now or utcnow()
    secs = max(0, int((ref - then).total_seconds()))
    mins = secs // 60
    hours = mins // 60
    days = hours // 24
    if secs < 60:
        return "Just now"
    if mins < 60:
        return f"{mins}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return f"{then.strftime('%b')} {then.day}"


def format_clock_time(value: str | None) -> str:
    """12-hour clock label ("9:05 AM") for schedule rows; "TBA" when unknown."""
    if not value:
        return "TBA"
    try:
        dt = parse_iso(value)
    except ValueError:
        return "TBA"
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"
