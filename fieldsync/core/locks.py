from __future__ import annotations

import contextlib
import threading
from typing import Dict, Iterator, List

from fieldsync.core.errors import SyncInProgressError


class PartitionLocks:
    """
    One pass lock per partition. Passes for different partitions never contend.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, partition: str) -> threading.Lock:
        key = str(partition).lower()
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.Lock()
                self._locks[key] = lk
            return lk

    @contextlib.contextmanager
    def hold(self, partition: str, *, timeout: float = 0.0) -> Iterator[None]:
        lk = self._lock_for(partition)
        acquired = lk.acquire(timeout=timeout) if timeout > 0 else lk.acquire(blocking=False)
        if not acquired:
            raise SyncInProgressError(partition=partition)
        try:
            yield
        finally:
            lk.release()

    def is_held(self, partition: str) -> bool:
        return self._lock_for(partition).locked()

    def held(self) -> List[str]:
        with self._guard:
            return sorted(k for k, lk in self._locks.items() if lk.locked())
