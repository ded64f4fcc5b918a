"""Periodic announcing of a torrent to the DHT network."""

from __future__ import annotations

import threading
import time
from typing import Callable


class DHTAnnouncer:
    """Calls an announce function periodically.

    While more peers are needed the function is called every ``min_interval``
    seconds, otherwise every ``interval`` seconds.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._need_more_peers = True
        self._closing = False
        self._running = False
        self._done = threading.Event()
        self.last_announce = 0.0

    def need_more_peers(self, value: bool) -> None:
        """Tell the announcer whether more peers are wanted."""
        with self._cond:
            self._need_more_peers = value
            self._cond.notify_all()

    def run(
        self,
        announce_func: Callable[[], None],
        interval: float,
        min_interval: float,
    ) -> None:
        """Announce until closed. Meant to run in its own thread."""
        with self._cond:
            if self._closing:
                self._done.set()
                return
            self._running = True
        try:
            announce_func()
            with self._cond:
                self.last_announce = time.monotonic()
                while not self._closing:
                    wait = min_interval if self._need_more_peers else interval
                    remaining = self.last_announce + wait - time.monotonic()
                    if remaining > 0:
                        self._cond.wait(remaining)
                        continue
                    self._cond.release()
                    try:
                        announce_func()
                    finally:
                        self._cond.acquire()
                    self.last_announce = time.monotonic()
        finally:
            self._done.set()

    def close(self) -> None:
        """Stop announcing and wait for ``run`` to return."""
        with self._cond:
            self._closing = True
            running = self._running
            self._cond.notify_all()
        if running:
            self._done.wait()