from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Hashable, Iterator

from trickplay.errors import BuildCancelledError

logger = logging.getLogger(__name__)

LOCK_POLL_SECONDS = 0.1


class _KeyLock:
    __slots__ = ("lock", "references")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.references = 0


class KeyedLockRegistry:
    """Lazily created per-key locks, dropped once nobody holds or awaits them."""

    def __init__(self, poll_seconds: float = LOCK_POLL_SECONDS) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, _KeyLock] = {}
        self._poll_seconds = poll_seconds

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable, cancel_event: threading.Event | None = None) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            self._acquire(entry.lock, key, cancel_event)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def _acquire(self, lock: threading.Lock, key: Hashable, cancel_event: threading.Event | None) -> None:
        if cancel_event is None:
            lock.acquire()
            return
        while not lock.acquire(timeout=self._poll_seconds):
            if cancel_event.is_set():
                raise BuildCancelledError(f"Cancelled while waiting for build lock on {key}")
        if cancel_event.is_set():
            lock.release()
            raise BuildCancelledError(f"Cancelled while waiting for build lock on {key}")

    def _checkout(self, key: Hashable) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.references += 1
            return entry

    def _checkin(self, key: Hashable, entry: _KeyLock) -> None:
        with self._guard:
            entry.references -= 1
            if entry.references == 0:
                del self._locks[key]


class BuildGate:
    """Single-flight, idempotent construction of file artifacts."""

    def __init__(self, registry: KeyedLockRegistry | None = None) -> None:
        self.registry = registry if registry is not None else KeyedLockRegistry()

    def ensure(
        self,
        path: str | Path,
        build: Callable[[], object],
        cancel_event: threading.Event | None = None,
    ) -> bool:
        """Run ``build`` unless ``path`` exists; returns True when this call built it."""

        artifact = Path(path)
        if artifact.exists():
            return False

        with self.registry.hold(str(artifact), cancel_event):
            # another caller may have finished while we waited
            if artifact.exists():
                logger.debug("Artifact appeared while waiting for lock: %s", artifact)
                return False
            build()
        return True
