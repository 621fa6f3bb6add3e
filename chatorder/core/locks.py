from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterator


class KeyedLockRegistry:
    """In-process mutex per (tenant, sender); entries are dropped once idle."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}
        self._guard = Lock()

    @contextmanager
    def hold(self, *, tenant_id: str, sender_id: str) -> Iterator[None]:
        key = (tenant_id, sender_id)
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                remaining = self._holders.get(key, 1) - 1
                if remaining <= 0:
                    self._holders.pop(key, None)
                    self._locks.pop(key, None)
                else:
                    self._holders[key] = remaining

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


sender_locks = KeyedLockRegistry()
