"""Injectable clock so stage and phase calculations never read the system time directly."""

from datetime import date, datetime, timedelta, timezone


class Clock:
    """Wall clock returning naive UTC timestamps, matching how rows are stored."""
    
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    
    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Clock pinned to one instant. Used by tests."""
    
    def __init__(self, instant: datetime):
        self.instant = instant
    
    def now(self) -> datetime:
        return self.instant
    
    def advance(self, **delta) -> None:
        self.instant = self.instant + timedelta(**delta)


_clock = Clock()


def get_clock() -> Clock:
    """Dependency returning the process clock."""
    return _clock
