"""
WasteWatch - Per-entity locks
Serializes in-process mutations keyed by entity id.

The database guards (conditional updates, version column) keep the
invariants across processes; these locks stop threads of one process from
racing each other into those guards.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Generator, Hashable, Tuple


class KeyedLocks:
    """Registry of one re-entrant lock per key, e.g. ("reward", 7)."""

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def get(self, key: Hashable) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: Hashable) -> Generator[Tuple[Hashable, ...], None, None]:
        """
        Hold the locks for all keys, acquired in the order given.

        Callers keep a fixed order (report, reward, user) so two
        operations never wait on each other in a cycle.
        """
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self.get(key))
            yield keys

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry shared by the lifecycle manager and the ledger
entity_locks = KeyedLocks()
