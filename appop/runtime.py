from __future__ import annotations

import heapq
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Condition, Lock

from .models import ReconcileOutcome

Key = tuple[str, str]  # (namespace, name)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class WorkQueue:
    """Deduplicating work queue of application keys.

    A key handed out by get() is "processing" until done() is called. Adding
    it again meanwhile only marks it dirty; it is queued again on done(), so
    no two workers ever hold the same key.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._queue: deque[Key] = deque()
        self._dirty: set[Key] = set()
        self._processing: set[Key] = set()
        self._delayed: list[tuple[float, int, Key]] = []
        self._seq = itertools.count()
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _add_locked(self, key: Key) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add(self, key: Key) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Key, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (time.monotonic() + delay_s, next(self._seq), key))
            self._cond.notify_all()

    def retry_after(self, key: Key, delay_s: float) -> None:
        """Schedule a failed key for ``delay_s`` from now.

        Pending adds for the key are dropped, so it comes back only after the
        delay, even when the failed pass's own writes re-queued it.
        """
        with self._cond:
            if key in self._dirty:
                self._dirty.discard(key)
                if key not in self._processing:
                    self._queue.remove(key)
        self.add_after(key, delay_s)

    def _promote_due(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._add_locked(key)

    def get(self, timeout: float | None = None) -> Key | None:
        """Next key to process, or None on timeout/shutdown."""
        end = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                now = time.monotonic()
                self._promote_due(now)
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutdown:
                    return None
                waits: list[float] = []
                if self._delayed:
                    waits.append(self._delayed[0][0] - now)
                if end is not None:
                    if end <= now:
                        return None
                    waits.append(end - now)
                self._cond.wait(min(waits) if waits else None)

    def done(self, key: Key) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutdown:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()


@dataclass
class KeyStatus:
    failures: int = 0
    last_error: str | None = None
    last_outcome: ReconcileOutcome | None = None
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "failures": self.failures,
            "last_error": self.last_error,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
            "updated_at": self.updated_at,
        }


class RuntimeState:
    """In-memory per-application bookkeeping for the controller."""

    def __init__(self, backoff_base_s: float = 0.5, backoff_max_s: float = 60.0) -> None:
        self.lock = Lock()
        self.backoff_base_s = max(0.0, float(backoff_base_s))
        self.backoff_max_s = max(self.backoff_base_s, float(backoff_max_s))
        self.statuses: dict[Key, KeyStatus] = {}
        self._key_locks: dict[Key, Lock] = {}

    def key_lock(self, key: Key) -> Lock:
        """Lock serializing passes for one application."""
        with self.lock:
            return self._key_locks.setdefault(key, Lock())

    def record_success(self, key: Key, outcome: ReconcileOutcome) -> None:
        with self.lock:
            if outcome.state == "gone":
                self.statuses.pop(key, None)
                self._key_locks.pop(key, None)
                return
            self.statuses[key] = KeyStatus(last_outcome=outcome)

    def record_failure(self, key: Key, error: Exception) -> int:
        """Returns the number of consecutive failed passes for ``key``."""
        with self.lock:
            st = self.statuses.setdefault(key, KeyStatus())
            st.failures += 1
            st.last_error = f"{type(error).__name__}: {error}"
            st.updated_at = utc_now()
            return st.failures

    def backoff(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.backoff_max_s, self.backoff_base_s * (2 ** min(failures - 1, 32)))

    def status(self, key: Key) -> KeyStatus | None:
        with self.lock:
            return self.statuses.get(key)
