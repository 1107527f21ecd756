# lab_inventory/core/clock.py
"""
Satu-satunya sumber waktu untuk core.

Semua perbandingan tanggal (jatuh tempo, reminder, overdue) lewat objek Clock,
bukan datetime.now() langsung, supaya "hari ini" selalu sama artinya dan test
bisa memakai FixedClock.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

WIB = timezone(timedelta(hours=7), name="WIB")


class Clock:
    """Current time in a fixed local UTC offset (default WIB, UTC+7)."""

    def __init__(self, tz: timezone = WIB):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz)

    def localize(self, value: datetime) -> datetime:
        """Naive datetimes are taken as local time; aware ones are converted."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def start_of_day(self, at: Optional[datetime] = None) -> datetime:
        current = self.localize(at) if at is not None else self.now()
        return current.replace(hour=0, minute=0, second=0, microsecond=0)

    def end_of_day(self, at: Optional[datetime] = None) -> datetime:
        # Batas eksklusif: tengah malam berikutnya
        return self.start_of_day(at) + timedelta(days=1)


class FixedClock(Clock):
    """Clock frozen at a given instant. Used by tests and one-off replays."""

    def __init__(self, at: datetime, tz: timezone = WIB):
        super().__init__(tz)
        self._at = self.localize(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = self.localize(at)

    def advance(self, delta: timedelta) -> datetime:
        self._at = self._at + delta
        return self._at


def make_clock(offset_hours: int = 7) -> Clock:
    if offset_hours == 7:
        return Clock(WIB)
    return Clock(timezone(timedelta(hours=offset_hours)))
