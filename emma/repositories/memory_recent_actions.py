import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from emma.repositories.recent_actions_base import RecentAction, RecentActionStore


class MemoryRecentActionStore(RecentActionStore):
    """
    Process-local store. One lock guards the whole table, so a claim is
    atomic for every key. Entries past the window are swept from claim()
    at most once per window.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, RecentAction] = {}
        self._lock = threading.Lock()
        self._last_sweep: Optional[datetime] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def claim(self, key: str, action_id: str, window: timedelta) -> Optional[RecentAction]:
        with self._lock:
            now = self._clock()
            if self._last_sweep is None or now - self._last_sweep >= window:
                self._sweep(now, window)

            existing = self._entries.get(key)
            if existing and existing.action_id != action_id and now - existing.seen_at < window:
                return existing

            self._entries[key] = RecentAction(key=key, action_id=action_id, seen_at=now)
            return None

    def purge(self, window: timedelta) -> int:
        with self._lock:
            return self._sweep(self._clock(), window)

    def _sweep(self, now: datetime, window: timedelta) -> int:
        stale = [k for k, v in self._entries.items() if now - v.seen_at >= window]
        for k in stale:
            del self._entries[k]
        self._last_sweep = now
        return len(stale)
