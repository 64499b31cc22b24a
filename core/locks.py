import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class TweakLockRegistry:
    """One lock per tweak id; apply and revert on the same id never overlap."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def lock_for(self, tweak_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(tweak_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[tweak_id] = lock
            return lock

    @contextmanager
    def hold(self, tweak_id: str) -> Iterator[None]:
        lock = self.lock_for(tweak_id)
        with lock:
            yield
