"""Per-resource locks held across check, execute and ledger append."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List


class _ResourceLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0                      # Holders plus waiters


class ResourceLockTable:
    """
    One lock per canonical resource path, created on first use and dropped
    once nobody holds or waits for it.

    Locks are always taken in sorted order, so two actions touching
    overlapping resource sets cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[str, _ResourceLock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, resource: str) -> _ResourceLock:
        with self._guard:
            entry = self._locks.get(resource)
            if entry is None:
                entry = self._locks[resource] = _ResourceLock()
            entry.users += 1
            return entry

    def _checkin(self, resource: str, entry: _ResourceLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[resource]

    @contextmanager
    def hold(self, resources: Iterable[str]) -> Iterator[None]:
        acquired: List[tuple] = []
        try:
            for resource in sorted(set(resources)):
                entry = self._checkout(resource)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(resource, entry)
                    raise
                acquired.append((resource, entry))
            yield
        finally:
            for resource, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(resource, entry)
