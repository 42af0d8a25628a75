"""UTC timestamp helpers shared by the database layer and the schedulers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

# Fixed width so stored timestamps sort and compare as plain strings
DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: datetime | None) -> str | None:
    """Serialise an aware (or naive UTC) datetime for storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DB_TIME_FORMAT)


def from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, DB_TIME_FORMAT).replace(tzinfo=timezone.utc)


def format_duration(duration: timedelta) -> str:
    """Render a duration compactly, e.g. ``1d 2h 5m``."""
    total = int(duration.total_seconds())
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def parse_duration(text: str) -> timedelta:
    """Parse ``30m``, ``2h``, ``1d 12h`` or a bare number of minutes.

    Raises:
        ValueError: If the text is not a recognised duration.
    """
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
    text = (text or "").strip().lower()
    if not text:
        raise ValueError("empty duration")
    if text.isdigit():
        return timedelta(minutes=int(text))

    total = 0
    for token in text.split():
        number, unit = token[:-1], token[-1]
        if unit not in units or not number.isdigit():
            raise ValueError(f"invalid duration component: {token!r}")
        total += int(number) * units[unit]
    return timedelta(seconds=total)
