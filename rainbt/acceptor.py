"""Accept connections from a listening socket and hand them over on a queue."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Optional

_POLL_INTERVAL = 0.05


class Acceptor:
    """Puts every socket accepted from ``listener`` on ``new_conns`` until closed."""

    def __init__(
        self,
        listener: socket.socket,
        new_conns: queue.Queue,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.listener = listener
        self.new_conns = new_conns
        self.log = log if log is not None else logging.getLogger(__name__)
        self._closing = threading.Event()
        self._running = threading.Event()
        self._done = threading.Event()

    def run(self) -> None:
        """Accept connections until closed or the listener fails. Meant to run in its own thread."""
        self._running.set()
        try:
            self._accept_loop()
        finally:
            self._done.set()

    def _accept_loop(self) -> None:
        try:
            self.listener.settimeout(_POLL_INTERVAL)
        except OSError as exc:
            if not self._closing.is_set():
                self.log.error(exc)
            return
        while not self._closing.is_set():
            try:
                conn, _ = self.listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._closing.is_set():
                    self.log.error(exc)
                return
            if self._closing.is_set():
                conn.close()
                return
            conn.settimeout(None)
            self.new_conns.put(conn)

    def close(self) -> None:
        """Stop accepting and close the listener."""
        self._closing.set()
        if self._running.is_set():
            self._done.wait()
        self.listener.close()