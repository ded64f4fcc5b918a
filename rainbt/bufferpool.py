"""A pool of reusable fixed-size byte buffers."""

from __future__ import annotations

import threading
from typing import Optional


class Buffer:
    """A zeroed view of ``datalen`` bytes borrowed from a BufferPool.

    Release it when done, or use it as a context manager.
    """

    def __init__(self, storage: bytearray, length: int, pool: BufferPool) -> None:
        self._storage: Optional[bytearray] = storage
        self._pool = pool
        self.data = memoryview(storage)[:length]
        self.data[:] = bytes(length)

    def release(self) -> None:
        """Return the buffer to its pool. The buffer must not be used afterwards."""
        if self._storage is None:
            raise RuntimeError("buffer is already released")
        storage, self._storage = self._storage, None
        self.data.release()
        self._pool._put(storage)

    def __enter__(self) -> Buffer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class BufferPool:
    """Hands out buffers of at most ``buflen`` bytes, reusing released ones."""

    def __init__(self, buflen: int) -> None:
        if buflen < 0:
            raise ValueError("buffer length must not be negative")
        self.buflen = buflen
        self._free: list[bytearray] = []
        self._lock = threading.Lock()

    def get(self, datalen: int) -> Buffer:
        """Return a zeroed buffer of ``datalen`` bytes."""
        if not 0 <= datalen <= self.buflen:
            raise ValueError(f"data length must be between 0 and {self.buflen}")
        with self._lock:
            storage = self._free.pop() if self._free else bytearray(self.buflen)
        return Buffer(storage, datalen, self)

    def _put(self, storage: bytearray) -> None:
        with self._lock:
            self._free.append(storage)