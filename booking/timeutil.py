from __future__ import annotations

from datetime import datetime, timezone

# Month names per supported locale
_MONTHS = {
    "en": (
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
    "pt": (
        "janeiro", "fevereiro", "março", "abril", "maio", "junho",
        "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
    ),
}

_LONG_FORMATS = {
    "en": "day {day:02d} of {month}, at {hour}:{minute:02d}h",
    "pt": "dia {day:02d} de {month}, às {hour}:{minute:02d}h",
}


def utcnow() -> datetime:
    """Current time as naive UTC, the way dates are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_hour(value: datetime) -> datetime:
    """19:34:12 -> 19:00:00 of the same day."""
    return value.replace(minute=0, second=0, microsecond=0)


def is_before(a: datetime, b: datetime) -> bool:
    return a < b


def to_iso(value: datetime | None) -> str | None:
    """Serialize a stored (naive UTC) datetime as an ISO string with offset."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def format_long(value: datetime, locale: str = "en") -> str:
    """
    Human readable long form, e.g. "day 01 of June, at 19:00h".
    Unknown locales fall back to English.
    """
    if locale not in _LONG_FORMATS:
        locale = "en"
    return _LONG_FORMATS[locale].format(
        day=value.day,
        month=_MONTHS[locale][value.month - 1],
        hour=value.hour,
        minute=value.minute,
    )
