"""
Per-partition locks.

Routes run in a worker threadpool, so a balance check and the debit that
depends on it must not interleave with another request for the same
(user, mode) partition. Locks are process wide and re-entrant: a service
holding a partition may read the balance, which can seed demo funds under
the same lock.
"""

import threading
from uuid import UUID


class PartitionLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[UUID, bool], threading.RLock] = {}

    def lock_for(self, user_id: UUID, is_demo: bool) -> threading.RLock:
        key = (user_id, bool(is_demo))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


partition_locks = PartitionLocks()
