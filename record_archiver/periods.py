"""
Calendar periods used to window archives.

Period boundaries are computed on the wall clock of a configured timezone and
converted back to UTC instants, so a "day" in Europe/Berlin is 23 or 25 hours
around DST changes and a "month" follows the real month length (leap years
included). Never add a fixed number of seconds to move between periods.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

UTC = timezone.utc


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def get_zone(name: str | tzinfo) -> tzinfo:
    if isinstance(name, tzinfo):
        return name
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def _midnight(day: date, tz: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=tz)


class Granularity(Enum):
    """Length of one archive window.

    Values are the codes stored in archives.period.
    """

    DAY = "D"
    MONTH = "M"

    @classmethod
    def parse(cls, value: str | Granularity) -> Granularity:
        """Accept a Granularity, its code ("D"/"M") or its name ("day"/"month")."""
        if isinstance(value, Granularity):
            return value
        text = value.strip()
        for member in cls:
            if text.upper() in (member.value, member.name):
                return member
        raise ValueError(f"unknown granularity: {value!r}")

    def truncate(self, instant: datetime, tz: tzinfo = UTC) -> datetime:
        """Start of the period containing instant, as an aware UTC datetime."""
        local = as_utc(instant).astimezone(tz)
        if self is Granularity.DAY:
            start = _midnight(local.date(), tz)
        else:
            start = datetime(local.year, local.month, 1, tzinfo=tz)
        return start.astimezone(UTC)

    def advance(self, start: datetime, tz: tzinfo = UTC) -> datetime:
        """Start of the period following the one beginning at start (aware UTC)."""
        local = as_utc(start).astimezone(tz)
        if self is Granularity.DAY:
            nxt = _midnight(local.date() + timedelta(days=1), tz)
        elif local.month == 12:
            nxt = datetime(local.year + 1, 1, 1, tzinfo=tz)
        else:
            nxt = datetime(local.year, local.month + 1, 1, tzinfo=tz)
        return nxt.astimezone(UTC)

    def label(self, start: datetime, tz: tzinfo = UTC) -> str:
        """Compact date label for file names and keys: D20170810 or M201708."""
        local = as_utc(start).astimezone(tz)
        if self is Granularity.DAY:
            return f"{self.value}{local:%Y%m%d}"
        return f"{self.value}{local:%Y%m}"
