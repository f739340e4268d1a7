"""
In-memory TTL cache with background eviction.

Entries carry an absolute expiry instant. Reads treat an expired entry as
absent straight away; a sweeper thread removes expired entries in bounded
batches so large maps never hold the write lock for long.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from .config import CacheConfig
from .exceptions import DataTypeNotSupportedError, KeyNotExistsError, ValueLessThanZeroError
from .locks import ReadWriteLock


class _Absent:
    """Marker type for missing or expired cache keys."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class Unsigned(int):
    """
    Integer counter that refuses to go below zero.

    Python integers are signed, so a counter that must stay unsigned is
    stored as an Unsigned instance. ``decr`` on ``Unsigned(0)`` raises
    ValueLessThanZeroError instead of producing -1.
    """

    def __new__(cls, value: int = 0) -> "Unsigned":
        if value < 0:
            raise ValueError(f"unsigned value cannot be negative: {value}")
        return super().__new__(cls, value)

    def __repr__(self) -> str:
        return f"Unsigned({int(self)})"


@dataclass
class CacheEntry:
    """A stored value plus its absolute expiry (0 means never)."""

    value: Any
    expire_at: float = 0.0

    def expired(self, now: Optional[float] = None) -> bool:
        if self.expire_at <= 0:
            return False
        return (now if now is not None else time.time()) >= self.expire_at


class TTLCache:
    """
    Thread-safe key/value cache with per-entry expiry.

    A single reader-writer lock guards the entry map. The sweeper thread
    wakes every ``gc_interval`` seconds, collects up to ``gc_max_once``
    expired keys under the read lock, then deletes them under the write
    lock.
    """

    def __init__(self, gc_interval: float = 60.0, gc_max_once: int = 100) -> None:
        """
        Initialize the cache and start its sweeper.

        Args:
            gc_interval: Seconds between sweeps; zero or below disables the sweeper
            gc_max_once: Maximum number of keys removed per sweep
        """
        self._values: dict[str, CacheEntry] = {}
        self._lock = ReadWriteLock()
        self._gc_interval = gc_interval
        self._gc_max_once = gc_max_once
        self._gc_stop = threading.Event()
        self._gc_thread: Optional[threading.Thread] = None
        self._closed = False
        self._start_gc()

    @classmethod
    def from_config(cls, config: CacheConfig) -> "TTLCache":
        """Create a cache from a CacheConfig."""
        return cls(gc_interval=config.gc_interval_seconds, gc_max_once=config.gc_max_once)

    def __enter__(self) -> "TTLCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        """Number of stored entries, including expired ones not yet swept."""
        with self._lock.read():
            return len(self._values)

    @property
    def gc_interval(self) -> float:
        return self._gc_interval

    @property
    def gc_max_once(self) -> int:
        return self._gc_max_once

    def set(self, key: str, value: Any, ttl: float = 0) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Any value
            ttl: Seconds until expiry; zero or negative never expires
        """
        expire_at = time.time() + ttl if ttl > 0 else 0.0
        with self._lock.write():
            self._values[key] = CacheEntry(value=value, expire_at=expire_at)

    def get(self, key: str) -> Any:
        """Return the stored value, or ABSENT if missing or expired."""
        with self._lock.read():
            entry = self._values.get(key)
            if entry is None or entry.expired():
                return ABSENT
            return entry.value

    def mget(self, *keys: str) -> list[Any]:
        """Return one result per key, in order."""
        return [self.get(key) for key in keys]

    def has(self, key: str) -> bool:
        with self._lock.read():
            entry = self._values.get(key)
            return entry is not None and not entry.expired()

    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        with self._lock.write():
            self._values.pop(key, None)

    def incr(self, key: str) -> None:
        """
        Add one to an integer entry, keeping its expiry.

        Raises:
            KeyNotExistsError: If the key is not stored
            DataTypeNotSupportedError: If the value is not an integer
        """
        self._adjust(key, 1)

    def decr(self, key: str) -> None:
        """
        Subtract one from an integer entry, keeping its expiry.

        Raises:
            KeyNotExistsError: If the key is not stored
            DataTypeNotSupportedError: If the value is not an integer
            ValueLessThanZeroError: If the value is Unsigned(0)
        """
        self._adjust(key, -1)

    def _adjust(self, key: str, delta: int) -> None:
        with self._lock.write():
            entry = self._values.get(key)
            if entry is None:
                raise KeyNotExistsError(key)

            value = entry.value
            if isinstance(value, bool) or not isinstance(value, int):
                raise DataTypeNotSupportedError(key, value)

            if isinstance(value, Unsigned):
                if value + delta < 0:
                    raise ValueLessThanZeroError(key)
                entry.value = Unsigned(value + delta)
            else:
                entry.value = type(value)(value + delta)

    def flush(self) -> None:
        """Discard every entry."""
        with self._lock.write():
            self._values = {}

    def close(self) -> None:
        """Stop the sweeper, wait for it to exit, and flush."""
        self._closed = True
        self._stop_gc()
        self.flush()

    def set_gc(self, gc_interval: float, gc_max_once: int) -> None:
        """
        Reconfigure the sweeper.

        The running sweep (if any) finishes first; the sweeper then restarts
        with the new parameters.
        """
        with self._lock.write():
            self._gc_interval = gc_interval
            self._gc_max_once = gc_max_once
        self._stop_gc()
        if not self._closed:
            self._start_gc()

    def _start_gc(self) -> None:
        self._gc_stop = threading.Event()
        self._gc_thread = threading.Thread(
            target=self._gc_loop,
            args=(self._gc_stop,),
            name="ttl-cache-gc",
            daemon=True,
        )
        self._gc_thread.start()

    def _stop_gc(self) -> None:
        thread = self._gc_thread
        if thread is None:
            return
        self._gc_stop.set()
        if thread is not threading.current_thread():
            thread.join()
        self._gc_thread = None

    def _gc_loop(self, stop: threading.Event) -> None:
        with self._lock.read():
            interval = self._gc_interval
        if interval <= 0:
            return

        while not stop.wait(interval):
            self._sweep()

    def _sweep(self) -> int:
        """Remove up to gc_max_once expired keys. Returns how many were removed."""
        now = time.time()
        expired: list[str] = []
        with self._lock.read():
            limit = self._gc_max_once
            for key, entry in self._values.items():
                if entry.expired(now):
                    expired.append(key)
                    if len(expired) >= limit:
                        break

        if not expired:
            return 0

        removed = 0
        with self._lock.write():
            for key in expired:
                # The key may have been rewritten between the two phases.
                entry = self._values.get(key)
                if entry is not None and entry.expired(now):
                    del self._values[key]
                    removed += 1
        return removed
