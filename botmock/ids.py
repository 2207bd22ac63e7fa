"""
Id counters and the clock shared by the update builder and the server.
"""
import threading
from datetime import datetime, timezone


class IdCounter:
    """Monotonic, thread-safe id source.

    Ids pinned by the caller are reported through ``observe`` so that
    auto-assigned ids never collide with them later.
    """

    def __init__(self, start: int = 1) -> None:
        self._next = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def observe(self, value: int) -> None:
        """Move the counter past an explicitly used id."""
        with self._lock:
            if value >= self._next:
                self._next = value + 1

    @property
    def last(self) -> int:
        """Last id handed out (start - 1 when none was)."""
        with self._lock:
            return self._next - 1


class Clock:
    """Source of message dates.

    With a reference timestamp every date is that instant, which keeps
    synthetic updates and generated responses reproducible.
    """

    def __init__(self, reference: datetime | None = None) -> None:
        if reference is not None and reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        self.reference = reference

    def now(self) -> datetime:
        if self.reference is not None:
            return self.reference
        return datetime.now(timezone.utc)

    def timestamp(self) -> int:
        return int(self.now().timestamp())
