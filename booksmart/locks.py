import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from booksmart.errors import Unavailable


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """Per-entity mutexes, so unrelated books and readers never contend.

    An entry lives only while some thread holds or waits for its key.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: Dict[str, _Entry] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, key: str) -> _Entry:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = _Entry()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Acquire the locks for ``keys`` in sorted order; raise ``Unavailable`` on timeout."""
        acquired: List[tuple] = []
        try:
            for key in sorted(set(keys)):
                entry = self._checkout(key)
                if not entry.lock.acquire(timeout=self.timeout):
                    self._checkin(key, entry)
                    raise Unavailable(f"Timed out waiting for {key}")
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)
