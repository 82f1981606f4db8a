"""Per-key serialization points.

Each registry hands out one re-entrant lock per key (machine id, session id, ...).
Callers nest them in a fixed order: user, then machine, then session.
A key's lock is dropped once nobody holds or waits for it.
"""
from contextlib import contextmanager
from threading import Lock, RLock

from washgate.errors import ConflictError


class LockTimeout(ConflictError):
    code = 'BUSY'


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = RLock()
        self.users = 0


class LockRegistry:
    def __init__(self, name):
        self.name = name
        self._guard = Lock()
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _checkout(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key, entry):
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key, timeout=None):
        entry = self._checkout(key)
        try:
            acquired = entry.lock.acquire(timeout=timeout) if timeout is not None else entry.lock.acquire()
            if not acquired:
                raise LockTimeout(f"{self.name} {key} is busy, try again.")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)


user_locks = LockRegistry('user')
machine_locks = LockRegistry('machine')
session_locks = LockRegistry('session')
