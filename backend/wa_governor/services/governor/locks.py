"""Per-connection lock registry: at most one in-flight mutation per connection."""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from wa_governor.core.exceptions import ConnectionBusy


class ConnectionLockRegistry:
    """Keyed in-process locks. Waiters give up after ``timeout`` seconds."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, connection_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(connection_id)
            if lock is None:
                lock = self._locks[connection_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, connection_id: int, timeout: float = None) -> Iterator[None]:
        lock = self._lock_for(connection_id)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            raise ConnectionBusy(
                f"Another operation is running for connection {connection_id}",
                connection_id=connection_id,
            )
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, connection_id: int) -> bool:
        return self._lock_for(connection_id).locked()
