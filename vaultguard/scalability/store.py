"""Shared TTL key-value store for cross-request security state. Injected; no global state."""

import json
import threading
import time
from typing import Any, Callable, Optional, Protocol


class SharedStore(Protocol):
    """
    Operations every security component relies on. Each read-modify-write is atomic
    with respect to concurrent workers touching the same key.
    """

    async def incr(self, key: str, ttl: int) -> int:
        """Increment counter, return new value. TTL applied on first create only."""
        ...

    async def get_int(self, key: str) -> int: ...

    async def set_flag(self, key: str, ttl: int) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def get_json(self, key: str) -> Any: ...

    async def set_json(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def record_timestamp(self, key: str, now: float, window_seconds: int, ttl: int) -> int:
        """Add now to the key's window, drop entries older than window, return window size."""
        ...

    async def append_capped(self, key: str, item: str, max_len: int, ttl: int) -> list[str]:
        """Append item, keep only the last max_len items, return them oldest first."""
        ...

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def delete_if_value(self, key: str, value: str) -> bool: ...

    async def ping(self) -> bool: ...


class InMemorySharedStore:
    """
    In-process store: key -> (value, expires_at). A single lock guards every mutation,
    so it is safe across asyncio tasks and threads of one process. Single node only.
    Expired keys are dropped when read, and by a full sweep at most once per
    sweep_interval on write, so per-IP keys do not accumulate.
    """

    def __init__(
        self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0
    ) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._data)

    def _live(self, key: str) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._data.items() if exp is not None and now >= exp]
        for key in expired:
            del self._data[key]
        self._next_sweep = now + self._sweep_interval

    def _put(self, key: str, value: Any, ttl: int) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        self._data[key] = (value, now + ttl)

    def _keep_ttl(self, key: str, value: Any) -> None:
        self._data[key] = (value, self._data[key][1])

    async def incr(self, key: str, ttl: int) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                self._put(key, 1, ttl)
                return 1
            self._keep_ttl(key, current + 1)
            return current + 1

    async def get_int(self, key: str) -> int:
        with self._lock:
            return int(self._live(key) or 0)

    async def set_flag(self, key: str, ttl: int) -> None:
        with self._lock:
            self._put(key, "1", ttl)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def get_json(self, key: str) -> Any:
        with self._lock:
            raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._put(key, raw, ttl)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def record_timestamp(self, key: str, now: float, window_seconds: int, ttl: int) -> int:
        cutoff = now - window_seconds
        with self._lock:
            stamps = [t for t in (self._live(key) or []) if t > cutoff]
            stamps.append(now)
            self._put(key, stamps, ttl)
            return len(stamps)

    async def append_capped(self, key: str, item: str, max_len: int, ttl: int) -> list[str]:
        with self._lock:
            items = list(self._live(key) or [])
            items.append(item)
            items = items[-max_len:]
            self._put(key, items, ttl)
            return list(items)

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._put(key, value, ttl)
            return True

    async def get(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
        return None if value is None else str(value)

    async def delete_if_value(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live(key) == value:
                del self._data[key]
                return True
            return False

    async def ping(self) -> bool:
        return True
