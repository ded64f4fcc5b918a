"""Dialing and accepting peer connections, including the protocol handshake.

Both sides handle Message Stream Encryption: an acceptor detects whether the
peer starts with an encrypted handshake, and a dialer may fall back to a plain
connection when encryption is not forced.
"""

from __future__ import annotations

import socket
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from rainbt import mse
from rainbt.logger import new_logger
from rainbt.mse import CryptoMethod

PSTR = b"\x13BitTorrent protocol"
HANDSHAKE_LENGTH = 68

_POLL_INTERVAL = 0.05


class HandshakeError(Exception):
    """The peer violated the protocol handshake."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


_INVALID_INFO_HASH = "invalid info hash"
_OWN_CONNECTION = "dropped own connection"
_NOT_ENCRYPTED = "connection is not encrypted"
_INVALID_PROTOCOL = "invalid protocol"


class _Transport(Protocol):
    def read(self, n: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...


class _RawTransport:
    """Socket transport that first returns bytes already read from the socket."""

    def __init__(self, sock: socket.socket, prefix: bytes = b"") -> None:
        self._sock = sock
        self._prefix = bytes(prefix)

    def read(self, n: int) -> bytes:
        if self._prefix:
            chunk, self._prefix = self._prefix[:n], self._prefix[n:]
            return chunk
        return self._sock.recv(n)

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)


class Connection:
    """A peer connection that is ready for protocol messages.

    Reads and writes are transparently decrypted and encrypted when the
    handshake negotiated encryption.
    """

    def __init__(self, sock: socket.socket, transport: Optional[_Transport] = None) -> None:
        self.sock = sock
        self._transport = transport if transport is not None else _RawTransport(sock)

    def read(self, n: int) -> bytes:
        """Return at most ``n`` bytes; an empty result means end of stream."""
        return self._transport.read(n)

    def read_exactly(self, n: int) -> bytes:
        """Return exactly ``n`` bytes or raise EOFError."""
        buf = bytearray()
        while len(buf) < n:
            chunk = self._transport.read(n - len(buf))
            if not chunk:
                raise EOFError("unexpected end of stream")
            buf += chunk
        return bytes(buf)

    def write(self, data: bytes) -> None:
        """Write all of ``data``."""
        self._transport.write(bytes(data))

    def close(self) -> None:
        """Close the underlying socket."""
        self.sock.close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class HandshakeResult:
    """Outcome of a completed handshake."""

    connection: Connection
    cipher: CryptoMethod
    extensions: bytes
    peer_id: bytes
    info_hash: bytes


def _check_length(value: bytes, size: int, what: str) -> bytes:
    value = bytes(value)
    if len(value) != size:
        raise ValueError(f"{what} must be {size} bytes")
    return value


def build_handshake(info_hash: bytes, peer_id: bytes, extensions: bytes) -> bytes:
    """Return the 68-byte handshake message."""
    return (
        PSTR
        + _check_length(extensions, 8, "extensions")
        + _check_length(info_hash, 20, "info hash")
        + _check_length(peer_id, 20, "peer id")
    )


def _read_rest(reader) -> tuple[bytes, bytes]:
    extensions = reader.read_exactly(8)
    info_hash = reader.read_exactly(20)
    return extensions, info_hash


def read_handshake1(reader) -> tuple[bytes, bytes]:
    """Read the protocol string, extensions and info hash; return the last two."""
    if reader.read_exactly(20) != PSTR:
        raise HandshakeError(_INVALID_PROTOCOL)
    return _read_rest(reader)


def read_handshake2(reader) -> bytes:
    """Read the peer id that ends the handshake."""
    return reader.read_exactly(20)


def _format_addr(addr) -> str:
    host, port = addr[0], addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _peer_name(sock: socket.socket) -> str:
    try:
        return _format_addr(sock.getpeername())
    except OSError:
        return "unknown"


def _abort(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


def accept(
    sock: socket.socket,
    handshake_timeout: float,
    get_skey: Optional[Callable[[bytes], Optional[bytes]]],
    force_encryption: bool,
    has_info_hash: Callable[[bytes], bool],
    our_extensions: bytes,
    our_id: bytes,
) -> HandshakeResult:
    """Complete the handshake on an accepted socket.

    A plain handshake is tried first; when the peer does not start with the
    protocol string and ``get_skey`` is given, an encrypted one is done.
    """
    log = new_logger("conn <- " + _peer_name(sock))
    if force_encryption and get_skey is None:
        raise ValueError("force_encryption requires get_skey")
    our_id = _check_length(our_id, 20, "peer id")

    sock.settimeout(handshake_timeout)

    encrypted = False
    cipher = CryptoMethod(0)

    def select(provided: CryptoMethod) -> CryptoMethod:
        nonlocal encrypted, cipher
        selected = CryptoMethod(0)
        if provided & CryptoMethod.RC4:
            selected = CryptoMethod.RC4
            encrypted = True
        elif provided & CryptoMethod.PLAINTEXT and not force_encryption:
            selected = CryptoMethod.PLAINTEXT
        cipher = selected
        return selected

    conn = Connection(sock)
    head = conn.read_exactly(20)
    if head == PSTR:
        extensions, info_hash = _read_rest(conn)
    elif get_skey is None:
        raise HandshakeError(_INVALID_PROTOCOL)
    else:
        stream = mse.Stream(_RawTransport(sock, head))
        stream.handshake_incoming(get_skey, select)
        log.debug("Encryption handshake is successful. Selected cipher: %s", cipher)
        conn = Connection(sock, stream)
        extensions, info_hash = read_handshake1(conn)

    if force_encryption and not encrypted:
        raise HandshakeError(_NOT_ENCRYPTED)
    if not has_info_hash(info_hash):
        raise HandshakeError(_INVALID_INFO_HASH)
    conn.write(build_handshake(info_hash, our_id, our_extensions))
    peer_id = read_handshake2(conn)
    if peer_id == our_id:
        raise HandshakeError(_OWN_CONNECTION)
    return HandshakeResult(conn, cipher, extensions, peer_id, info_hash)


class _StopWatcher:
    """Aborts registered sockets when the stop event is set, until exited."""

    def __init__(self, stop_event: Optional[threading.Event]) -> None:
        self._stop = stop_event
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._sockets: list[socket.socket] = []
        self._thread: Optional[threading.Thread] = None

    def stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def add(self, sock: socket.socket) -> None:
        with self._lock:
            self._sockets.append(sock)
        if self.stopped():
            _abort(sock)

    def _watch(self) -> None:
        while not self._done.wait(_POLL_INTERVAL):
            if self.stopped():
                with self._lock:
                    sockets = list(self._sockets)
                for sock in sockets:
                    _abort(sock)
                return

    def __enter__(self) -> _StopWatcher:
        if self._stop is not None:
            self._thread = threading.Thread(target=self._watch, daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._done.set()
        if self._thread is not None:
            self._thread.join()


def _connect(addr, timeout: float, watcher: _StopWatcher) -> socket.socket:
    if watcher.stopped():
        raise ConnectionAbortedError("dial cancelled")
    sock = socket.create_connection(addr, timeout=timeout)
    watcher.add(sock)
    return sock


def dial(
    addr,
    dial_timeout: float,
    handshake_timeout: float,
    enable_encryption: bool,
    force_encryption: bool,
    our_extensions: bytes,
    info_hash: bytes,
    our_id: bytes,
    stop_event: Optional[threading.Event] = None,
) -> HandshakeResult:
    """Connect to ``addr`` (a host and port pair) and complete the handshake.

    When encryption is enabled but not forced and the encrypted handshake
    fails, the peer is dialed again without encryption. Setting
    ``stop_event`` aborts the operation.
    """
    log = new_logger("conn -> " + _format_addr(addr))
    info_hash = _check_length(info_hash, 20, "info hash")
    our_id = _check_length(our_id, 20, "peer id")
    out = build_handshake(info_hash, our_id, our_extensions)

    with _StopWatcher(stop_event) as watcher:
        log.debug("Connecting to peer...")
        sock = _connect(addr, dial_timeout, watcher)
        log.debug("Connected")
        try:
            sock.settimeout(handshake_timeout)
            cipher = CryptoMethod(0)
            if enable_encryption:
                provide = CryptoMethod.RC4
                if not force_encryption:
                    provide |= CryptoMethod.PLAINTEXT
                stream = mse.Stream(_RawTransport(sock))
                try:
                    cipher = stream.handshake_outgoing(info_hash, provide, out)
                except (mse.MSEError, OSError, EOFError) as exc:
                    if watcher.stopped():
                        raise
                    log.debug("Encryption handshake has failed: %s", exc)
                    if force_encryption:
                        log.debug("Will not try again because outgoing encryption is forced.")
                        raise HandshakeError(_NOT_ENCRYPTED) from exc
                    sock.close()
                    log.debug("Connecting again without encryption...")
                    sock = _connect(addr, dial_timeout, watcher)
                    log.debug("Connected")
                    sock.settimeout(handshake_timeout)
                    sock.sendall(out)
                    conn = Connection(sock)
                else:
                    log.debug("Encryption handshake is successful. Selected cipher: %s", cipher)
                    conn = Connection(sock, stream)
            else:
                sock.sendall(out)
                conn = Connection(sock)

            extensions, received_hash = read_handshake1(conn)
            if received_hash != info_hash:
                raise HandshakeError(_INVALID_INFO_HASH)
            peer_id = read_handshake2(conn)
            if peer_id == our_id:
                raise HandshakeError(_OWN_CONNECTION)
            return HandshakeResult(conn, cipher, extensions, peer_id, received_hash)
        except BaseException:
            sock.close()
            raise