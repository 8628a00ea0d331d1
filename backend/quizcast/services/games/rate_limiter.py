import threading
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple


class RateLimiter:
    """Sliding-window counter per (connection, event).

    An event is accepted while fewer than ``limit`` accepted events of the
    same kind fall inside the trailing window. Rejected events are not
    counted. Events without a configured limit are always accepted.
    """

    def __init__(self, limits: Dict[str, int], window_ms: int = 1000,
                 clock: Optional[Callable[[], int]] = None):
        self.limits = dict(limits)
        self.window_ms = window_ms
        self.clock = clock
        self._hits: Dict[Tuple[str, str], Deque[int]] = {}
        self._lock = threading.Lock()

    def check(self, conn_id: str, event: str) -> int:
        """Record the event and return 0, or return the ms until it would be
        accepted."""
        limit = self.limits.get(event)
        if not limit:
            return 0
        now = self.clock()
        key = (conn_id, event)
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window_ms:
                hits.popleft()
            if len(hits) >= limit:
                return max(1, self.window_ms - (now - hits[0]))
            hits.append(now)
        return 0

    def prune(self) -> int:
        now = self.clock()
        with self._lock:
            stale = [k for k, hits in self._hits.items()
                     if not hits or now - hits[-1] >= self.window_ms]
            for key in stale:
                del self._hits[key]
        return len(stale)

    def forget(self, conn_id: str) -> None:
        with self._lock:
            for key in [k for k in self._hits if k[0] == conn_id]:
                del self._hits[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)
