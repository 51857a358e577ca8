from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from .errors import CommitError


class PartitionGuard:
    """One lock per (table, partition), shared across planning and commit cycles.

    Planning uses ``try_hold`` and skips busy partitions; commits use ``hold``
    and wait, so commits on one partition are serialized. A partition's lock
    is dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        # key -> [lock, holders and waiters]
        self._locks: dict[tuple[str, str], list] = {}
        self._mutex = threading.Lock()

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)

    def _checkout(self, key: tuple[str, str]) -> threading.Lock:
        with self._mutex:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: tuple[str, str]) -> None:
        with self._mutex:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def is_running(self, table_id: str, partition: str) -> bool:
        with self._mutex:
            entry = self._locks.get((table_id, partition))
            return entry is not None and entry[0].locked()

    @contextmanager
    def try_hold(self, table_id: str, partition: str) -> Iterator[bool]:
        key = (table_id, partition)
        lock = self._checkout(key)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            self._checkin(key)

    @contextmanager
    def hold(self, table_id: str, partition: str, timeout: float | None = None) -> Iterator[None]:
        key = (table_id, partition)
        lock = self._checkout(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            self._checkin(key)
            raise CommitError(
                f"Timed out waiting for partition {partition!r} of {table_id}", partition=partition
            )
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)


DEFAULT_GUARD = PartitionGuard()
