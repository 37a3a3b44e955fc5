"""
Keyed lock table.

WHAT: One mutex per key, created on demand and dropped when unused
WHY: Serialize harvest mutations per harvest id without a global lock
HOW: Registry of (lock, refcount) guarded by a short-lived registry mutex
"""

import threading
from contextlib import contextmanager
from typing import Dict, List

from ..utils.exceptions import BusyError
from ..utils.logger import get_logger, log_context

logger = get_logger(__name__)


class KeyedLock:
    """
    Mutex table keyed by string.

    The registry mutex is only held to look up or retire an entry, never
    while waiting on a key's lock, so holders of different keys never
    contend with each other.
    """

    def __init__(self):
        self._registry: Dict[str, List] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, key: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._registry.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._registry[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str):
        with self._registry_lock:
            entry = self._registry[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._registry[key]

    @contextmanager
    def hold(self, key: str, timeout: float):
        """
        Hold the lock for `key` for the duration of the block.

        Raises:
            BusyError: the lock was not acquired within `timeout` seconds
        """
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"Lock wait for {key} exceeded {timeout}s")
                raise BusyError(key, timeout)
            try:
                with log_context(key):
                    yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._registry_lock:
            return len(self._registry)


# Process-wide table for harvest serialization
harvest_locks = KeyedLock()
