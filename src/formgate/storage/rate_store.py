"""
Rate Counter Store

Per-client tumbling window counters shared by every request handler.

Two backends are provided:
- ``FileRateCounterStore`` keeps one JSON file per client key and performs the
  read-modify-write under an exclusive ``flock`` on that key's file, so
  concurrent workers (threads or processes) never both observe a stale count.
- ``InMemoryRateCounterStore`` keeps counters in a dict guarded by per-key
  locks; it is enough for a single process and for tests.

Windows are fixed, not sliding: once ``now - window_start`` exceeds the window
length the counter restarts at 1 with a fresh window start.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from threading import Lock

from formgate.core.models import RateCounter

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


def advance_counter(
    counter: RateCounter | None, now: float, window_seconds: float
) -> RateCounter:
    """Return the counter after counting one more request at ``now``."""
    if counter is None or now - counter.window_start > window_seconds:
        return RateCounter(window_start=now, count=1)
    return RateCounter(window_start=counter.window_start, count=counter.count + 1)


def _is_expired(counter: RateCounter, now: float, window_seconds: float) -> bool:
    return now - counter.window_start > window_seconds


class FileRateCounterStore:
    """File-backed counters, one record per client key."""

    def __init__(
        self,
        directory: Path | str,
        window_seconds: float,
        *,
        clock: Clock = time.time,
    ) -> None:
        """
        Initialize the store.

        Args:
            directory: Writable directory holding one file per client key
            window_seconds: Length of the tumbling window
            clock: Source of Unix timestamps, injectable for tests
        """
        self._directory = Path(directory)
        self._window = window_seconds
        self._clock = clock

    def path_for(self, key: str) -> Path:
        """Return the record path for ``key``; keys never reach the filesystem raw."""
        digest = hashlib.sha256((key or "unknown").encode("utf-8")).hexdigest()
        return self._directory / f"rate_{digest[:32]}.json"

    def increment(self, key: str) -> int:
        """Count one request for ``key`` and return the running window count."""
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        while True:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
            with os.fdopen(fd, "r+", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    if os.fstat(handle.fileno()).st_nlink == 0:
                        # Unlinked by prune while we waited; retry on a fresh file.
                        continue
                    handle.seek(0)
                    counter = advance_counter(
                        _decode(handle.read()), self._clock(), self._window
                    )
                    handle.seek(0)
                    handle.truncate()
                    handle.write(_encode(counter))
                    handle.flush()
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            return counter.count

    def read(self, key: str) -> RateCounter | None:
        """Return the stored counter for ``key`` without modifying it."""
        path = self.path_for(key)
        try:
            with path.open("r", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_SH)
                try:
                    return _decode(handle.read())
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            return None

    def prune(self) -> int:
        """Delete records whose window has elapsed. Returns the number removed."""
        if not self._directory.is_dir():
            return 0
        now = self._clock()
        removed = 0
        for path in self._directory.glob("rate_*.json"):
            try:
                with path.open("r", encoding="utf-8") as handle:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                    try:
                        counter = _decode(handle.read())
                        if counter is None or _is_expired(counter, now, self._window):
                            path.unlink(missing_ok=True)
                            removed += 1
                    finally:
                        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            except FileNotFoundError:
                continue
        if removed:
            LOGGER.debug("Pruned %d expired rate counter(s)", removed)
        return removed


class InMemoryRateCounterStore:
    """Process-local counters guarded by one lock per key."""

    def __init__(self, window_seconds: float, *, clock: Clock = time.time) -> None:
        self._window = window_seconds
        self._clock = clock
        self._counters: dict[str, RateCounter] = {}
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def _lock_for(self, key: str) -> Lock:
        with self._guard:
            return self._locks.setdefault(key, Lock())

    def increment(self, key: str) -> int:
        with self._lock_for(key):
            counter = advance_counter(
                self._counters.get(key), self._clock(), self._window
            )
            self._counters[key] = counter
            return counter.count

    def read(self, key: str) -> RateCounter | None:
        return self._counters.get(key)

    def prune(self) -> int:
        now = self._clock()
        with self._guard:
            expired = [
                key
                for key, counter in self._counters.items()
                if _is_expired(counter, now, self._window)
            ]
            for key in expired:
                self._counters.pop(key, None)
                self._locks.pop(key, None)
        return len(expired)


def _encode(counter: RateCounter) -> str:
    return json.dumps({"window_start": counter.window_start, "count": counter.count})


def _decode(raw: str) -> RateCounter | None:
    if not raw.strip():
        return None
    try:
        data = json.loads(raw)
        return RateCounter(
            window_start=float(data["window_start"]), count=int(data["count"])
        )
    except (ValueError, KeyError, TypeError):
        LOGGER.warning("Discarding unreadable rate counter record")
        return None


__all__ = [
    "FileRateCounterStore",
    "InMemoryRateCounterStore",
    "advance_counter",
]
