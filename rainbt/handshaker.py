"""Run peer handshakes in the background and report the outcome on a queue."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Any, Callable, Optional

from rainbt.btconn import (
    Connection,
    HandshakeError,
    _abort,
    _format_addr,
    _peer_name,
    accept,
    dial,
)
from rainbt.logger import new_logger
from rainbt.mse import CryptoMethod


def _log_failure(log: logging.Logger, exc: BaseException, fallback: Callable[..., None], what: str) -> None:
    if isinstance(exc, EOFError):
        log.debug("peer has closed the connection: EOF")
    elif isinstance(exc, HandshakeError):
        log.debug("protocol error: %s", exc)
    elif isinstance(exc, OSError):
        log.debug("net operation error: %s", exc)
    else:
        fallback("cannot complete %s handshake: %s", what, exc)


class IncomingHandshaker:
    """Does the handshake on an accepted socket.

    After ``run`` the handshaker itself is put on the results queue; ``conn``
    is then a ready Connection, or ``error`` holds what went wrong.
    """

    def __init__(self, sock: socket.socket) -> None:
        self.conn: Any = sock
        self.peer_id = bytes(20)
        self.extensions = bytes(8)
        self.cipher = CryptoMethod(0)
        self.error: Optional[BaseException] = None
        self._sock = sock
        self._lock = threading.Lock()
        self._closing = False
        self._running = False
        self._done = threading.Event()

    def run(
        self,
        peer_id: bytes,
        get_skey: Optional[Callable[[bytes], Optional[bytes]]],
        check_info_hash: Callable[[bytes], bool],
        results: queue.Queue,
        timeout: float,
        our_extensions: bytes,
        force_encryption: bool,
    ) -> None:
        """Do the handshake and report the result. Meant to run in its own thread."""
        with self._lock:
            self._running = True
        try:
            log = new_logger("conn <- " + _peer_name(self._sock))
            try:
                result = accept(
                    self._sock, timeout, get_skey, force_encryption,
                    check_info_hash, our_extensions, peer_id,
                )
            except Exception as exc:  # reported through the results queue
                _log_failure(log, exc, log.debug, "incoming")
                self.error = exc
            else:
                log.debug(
                    "Connection accepted. (cipher=%s extensions=%s client=%r)",
                    result.cipher, result.extensions.hex(), result.peer_id[:8],
                )
                self.conn = result.connection
                self.peer_id = result.peer_id
                self.extensions = result.extensions
                self.cipher = result.cipher
            with self._lock:
                if self._closing:
                    self.conn.close()
                else:
                    results.put(self)
        finally:
            self._done.set()

    def close(self) -> None:
        """Stop the handshaker, closing the socket if the handshake is still going on."""
        with self._lock:
            self._closing = True
            ongoing = self._running and not self._done.is_set()
        if ongoing:
            _abort(self._sock)
            self._done.wait()


class OutgoingHandshaker:
    """Dials a peer and does the handshake.

    After ``run`` the handshaker is put on the results queue unless it was
    closed; ``conn`` is then a ready Connection, or ``error`` is set.
    """

    def __init__(self, addr, source: Any) -> None:
        self.addr = addr
        self.source = source
        self.conn: Optional[Connection] = None
        self.peer_id = bytes(20)
        self.extensions = bytes(8)
        self.cipher = CryptoMethod(0)
        self.error: Optional[BaseException] = None
        self._close_event = threading.Event()
        self._running = threading.Event()
        self._done = threading.Event()

    def run(
        self,
        dial_timeout: float,
        handshake_timeout: float,
        peer_id: bytes,
        info_hash: bytes,
        results: queue.Queue,
        our_extensions: bytes,
        disable_encryption: bool,
        force_encryption: bool,
    ) -> None:
        """Dial, do the handshake and report the result. Meant to run in its own thread."""
        self._running.set()
        try:
            log = new_logger("peer -> " + _format_addr(self.addr))
            try:
                result = dial(
                    self.addr, dial_timeout, handshake_timeout, not disable_encryption,
                    force_encryption, our_extensions, info_hash, peer_id, self._close_event,
                )
            except Exception as exc:  # reported through the results queue
                _log_failure(log, exc, log.error, "outgoing")
                self.error = exc
                if not self._close_event.is_set():
                    results.put(self)
                return
            log.debug(
                "Connected to peer. (cipher=%s extensions=%s client=%r)",
                result.cipher, result.extensions.hex(), result.peer_id[:8],
            )
            self.conn = result.connection
            self.peer_id = result.peer_id
            self.extensions = result.extensions
            self.cipher = result.cipher
            if self._close_event.is_set():
                result.connection.close()
            else:
                results.put(self)
        finally:
            self._done.set()

    def close(self) -> None:
        """Stop the handshaker, aborting an ongoing dial or handshake."""
        self._close_event.set()
        if self._running.is_set():
            self._done.wait()