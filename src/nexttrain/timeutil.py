"""Clock-string parsing, countdowns and journey durations.

National Rail boards report times as bare "HH:MM" strings in UK local
time with no date attached. Everything here resolves those strings
against "now" in Europe/London. Every function accepts an explicit
``now`` so callers (and tests) can freeze the clock.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

LONDON = ZoneInfo("Europe/London")

# "HH:MM" with an optional trailing "*" marker
_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*\*?\s*$")


def london_now() -> datetime:
    """Current wall-clock time in Europe/London."""
    return datetime.now(LONDON)


def parse_clock_time(
    text: str | None,
    reference: str | datetime | None = None,
    now: datetime | None = None,
) -> datetime | None:
    """Parse an "HH:MM" clock string into an absolute instant.

    The time is placed on today's date, or on the reference's date when
    ``reference`` is an already-parsed instant.

    Args:
        text: Clock string, e.g. "09:41". Empty or malformed input yields None.
        reference: Optional clock string (or already-parsed instant). If the
            parsed time falls before it, the result rolls forward by one day.
            Models overnight services: depart 23:50, arrive 00:10.
        now: Frozen "current" time. Defaults to london_now().
    """
    if not text:
        return None
    match = _CLOCK_RE.match(text)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None

    now = now or london_now()
    ref = None
    if reference is not None:
        ref = reference if isinstance(reference, datetime) else parse_clock_time(reference, now=now)
    # An instant reference may already sit on another day; count from its date
    parsed = (ref or now).replace(hour=hour, minute=minute, second=0, microsecond=0)
    if ref is not None and parsed < ref:
        parsed += timedelta(days=1)
    return parsed


def nearest_day(instant: datetime, anchor: datetime) -> datetime:
    """Shift ``instant`` by a whole day so it lies within 12 hours of ``anchor``.

    Board times carry no date. Around midnight a bare "00:10" parsed onto
    today is really tomorrow's, and a "23:55" seen at 00:05 is yesterday's.
    """
    if anchor - instant > timedelta(hours=12):
        return instant + timedelta(days=1)
    if instant - anchor > timedelta(hours=12):
        return instant - timedelta(days=1)
    return instant


def seconds_until(
    text: str | None,
    reference: str | datetime | None = None,
    now: datetime | None = None,
) -> int | None:
    """Signed whole seconds from now until the given clock time (None if unparseable)."""
    now = now or london_now()
    parsed = parse_clock_time(text, reference, now=now)
    if parsed is None:
        return None
    return (parsed - now) // timedelta(seconds=1)


def format_countdown(seconds: int) -> str:
    """Format a signed countdown for display: "Departed", "Now", "45s", "5m 30s"."""
    if seconds < 0:
        return "Departed"
    if seconds == 0:
        return "Now"
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes >= 60:
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m {secs}s" if secs else f"{minutes}m"


def journey_duration(
    departure: str | None,
    arrival: str | None,
    now: datetime | None = None,
) -> timedelta | None:
    """Duration between two clock strings, rolling the arrival past midnight if needed.

    Returns None if either side is unparseable or the result is negative,
    which usually means the two times belong to different services.
    """
    now = now or london_now()
    dep = parse_clock_time(departure, now=now)
    if dep is None:
        return None
    arr = parse_clock_time(arrival, reference=dep, now=now)
    if arr is None:
        return None
    duration = arr - dep
    if duration < timedelta(0):
        return None
    return duration


def format_duration(duration: timedelta | None) -> str:
    """Human-readable journey length: "1 min", "30 mins", "1 hr 5 mins"."""
    if duration is None:
        return ""
    total_minutes = int(duration.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    mins = f"{minutes} min" if minutes == 1 else f"{minutes} mins"
    if not hours:
        return mins
    hrs = f"{hours} hr" if hours == 1 else f"{hours} hrs"
    return f"{hrs} {mins}" if minutes else hrs


def format_clock(instant: datetime) -> str:
    """Render an instant back to an "HH:MM" clock string."""
    return instant.strftime("%H:%M")
