"""Message Stream Encryption: an obfuscation layer for peer connections.

The handshake agrees on a shared secret with Diffie-Hellman, proves knowledge
of a stream key (the torrent's info hash) and then encrypts the rest of the
stream with RC4, or leaves it in plain text if both sides agree on that.
"""

from __future__ import annotations

import enum
import hashlib
import secrets
import socket
from typing import Callable, Optional, Protocol

_P = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A63A36210000000000090563",
    16,
)
_G = 2
_VC = bytes(8)
_KEY_SIZE = 96
_MAX_PAD = 512
_MAX_PAYLOAD = 0xFFFF


class MSEError(Exception):
    """Raised when the encryption handshake fails."""


class CryptoMethod(enum.IntFlag):
    """Bit field of crypto methods; each bit stands for one method."""

    PLAINTEXT = 1
    RC4 = 2

    def __str__(self) -> str:
        if self.value == CryptoMethod.PLAINTEXT.value:
            return "PlainText"
        if self.value == CryptoMethod.RC4.value:
            return "RC4"
        return "unknown"


class Transport(Protocol):
    """A byte stream the handshake runs over."""

    def read(self, n: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...


class RC4:
    """The RC4 stream cipher. Encryption and decryption are the same operation."""

    __slots__ = ("_state", "_i", "_j")

    def __init__(self, key: bytes) -> None:
        key = bytes(key)
        if not 1 <= len(key) <= 256:
            raise ValueError("invalid RC4 key size")
        state = list(range(256))
        j = 0
        for i in range(256):
            j = (j + state[i] + key[i % len(key)]) & 0xFF
            state[i], state[j] = state[j], state[i]
        self._state = state
        self._i = 0
        self._j = 0

    def process(self, data: bytes) -> bytes:
        """XOR ``data`` with the next bytes of the key stream."""
        state = self._state
        i, j = self._i, self._j
        out = bytearray(len(data))
        for pos, byte in enumerate(data):
            i = (i + 1) & 0xFF
            j = (j + state[i]) & 0xFF
            state[i], state[j] = state[j], state[i]
            out[pos] = byte ^ state[(state[i] + state[j]) & 0xFF]
        self._i, self._j = i, j
        return bytes(out)


class SocketTransport:
    """Adapts a connected socket to the read/write transport interface."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def read(self, n: int) -> bytes:
        """Return at most ``n`` bytes; an empty result means end of stream."""
        return self.sock.recv(n)

    def write(self, data: bytes) -> None:
        """Send all of ``data``."""
        self.sock.sendall(data)


def hash_skey(key: bytes) -> bytes:
    """Return the hash the initiator sends to identify the stream key."""
    return hashlib.sha1(b"req2" + bytes(key)).digest()


def _bytes_with_pad(value: int) -> bytes:
    return value.to_bytes(_KEY_SIZE, "big")


def _hash_int(prefix: bytes, value: int) -> bytes:
    return hashlib.sha1(prefix + _bytes_with_pad(value)).digest()


def _rc4_key(prefix: bytes, secret: int, skey: bytes) -> bytes:
    return hashlib.sha1(prefix + _bytes_with_pad(secret) + skey).digest()


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _key_pair() -> tuple[int, int]:
    private = int.from_bytes(secrets.token_bytes(20), "big")
    return private, pow(_G, private, _P)


def _pad_zero() -> bytes:
    return bytes(secrets.randbelow(_MAX_PAD))


def _pad_random() -> bytes:
    return secrets.token_bytes(secrets.randbelow(_MAX_PAD))


def _is_power_of_two(x: int) -> bool:
    return x != 0 and x & (x - 1) == 0


def _check_selected(selected: int, provided: int, not_provided_message: str) -> None:
    if selected == 0:
        raise MSEError("none of the provided methods are accepted")
    if not _is_power_of_two(selected):
        raise MSEError(f"invalid crypto selected: {selected}")
    if selected & provided == 0:
        raise MSEError(f"{not_provided_message}: {selected}")


class Stream:
    """Wraps a transport and encrypts/decrypts everything after the handshake.

    One of the handshake methods must complete before ``read`` and ``write``
    can be used. Reads past the end of the stream raise EOFError.
    """

    def __init__(self, raw: Transport) -> None:
        self.raw = raw
        self._enc: Optional[RC4] = None
        self._dec: Optional[RC4] = None
        self._pending = b""
        self._ready = False

    # -- raw helpers -------------------------------------------------------

    def _read_raw_exactly(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.raw.read(n - len(buf))
            if not chunk:
                raise EOFError("unexpected end of stream")
            buf += chunk
        return bytes(buf)

    def _read_at_least(self, minimum: int, maximum: int) -> bytes:
        buf = bytearray()
        while len(buf) < minimum:
            chunk = self.raw.read(maximum - len(buf))
            if not chunk:
                raise EOFError("unexpected end of stream")
            buf += chunk
        return bytes(buf)

    def _decrypt(self, data: bytes) -> bytes:
        return self._dec.process(data) if self._dec is not None else data

    def _encrypt(self, data: bytes) -> bytes:
        return self._enc.process(data) if self._enc is not None else data

    def _read_decrypted(self, n: int) -> bytes:
        return self._decrypt(self._read_raw_exactly(n))

    def _read_uint(self, size: int) -> int:
        return int.from_bytes(self._read_decrypted(size), "big")

    def _read_sync(self, key: bytes, limit: int) -> None:
        """Skip raw bytes until ``key`` is found, reading at most ``limit`` bytes."""
        window = bytearray(self._read_raw_exactly(len(key)))
        limit -= len(key)
        while True:
            if window == key:
                return
            if limit <= 0:
                raise MSEError("sync point is not found")
            window += self._read_raw_exactly(1)
            limit -= 1
            del window[0]

    def _init_rc4(self, enc_prefix: bytes, dec_prefix: bytes, secret: int, skey: bytes) -> None:
        self._enc = RC4(_rc4_key(enc_prefix, secret, skey))
        self._dec = RC4(_rc4_key(dec_prefix, secret, skey))
        discard = bytes(1024)
        self._enc.process(discard)
        self._dec.process(discard)

    def _update_cipher(self, selected: int) -> None:
        if selected == CryptoMethod.PLAINTEXT:
            self._enc = None
            self._dec = None
        self._ready = True

    # -- handshakes --------------------------------------------------------

    def handshake_outgoing(
        self,
        skey: bytes,
        crypto_provide: CryptoMethod,
        initial_payload: bytes = b"",
    ) -> CryptoMethod:
        """Run the initiator side of the handshake and return the selected method.

        ``initial_payload`` is sent along with the handshake.
        """
        skey = bytes(skey)
        initial_payload = bytes(initial_payload or b"")
        provide = int(crypto_provide)
        if provide == 0:
            raise MSEError("no crypto methods are provided")
        if len(initial_payload) > _MAX_PAYLOAD:
            raise MSEError("initial payload is too big")

        xa, ya = _key_pair()

        # Step 1: A->B: Ya, PadA
        self.raw.write(_bytes_with_pad(ya) + _pad_random())

        # Step 2: B->A: Yb, PadB
        received = self._read_at_least(_KEY_SIZE, _KEY_SIZE + _MAX_PAD)
        first_read = len(received)
        yb = int.from_bytes(received[:_KEY_SIZE], "big")
        secret = pow(yb, xa, _P)
        self._init_rc4(b"keyA", b"keyB", secret, skey)

        # Step 3: A->B: HASH('req1', S), HASH('req2', SKEY) xor HASH('req3', S),
        # ENCRYPT(VC, crypto_provide, len(PadC), PadC, len(IA)), ENCRYPT(IA)
        hash_s = _hash_int(b"req1", secret)
        hash_skey_xor = _xor(hash_skey(skey), _hash_int(b"req3", secret))
        pad_c = _pad_zero()
        plain = b"".join(
            [
                _VC,
                provide.to_bytes(4, "big"),
                len(pad_c).to_bytes(2, "big"),
                pad_c,
                len(initial_payload).to_bytes(2, "big"),
                initial_payload,
            ]
        )
        self.raw.write(hash_s + hash_skey_xor + self._enc.process(plain))

        # Step 4: B->A: ENCRYPT(VC, crypto_select, len(padD), padD)
        vc_enc = self._dec.process(_VC)
        self._read_sync(vc_enc, _KEY_SIZE + _MAX_PAD + len(_VC) - first_read)
        selected = self._read_uint(4)
        _check_selected(selected, provide, "selected crypto was not provided")
        pad_d_length = self._read_uint(2)
        self._read_decrypted(pad_d_length)
        self._update_cipher(selected)
        return CryptoMethod(selected)

    def handshake_incoming(
        self,
        get_skey: Callable[[bytes], Optional[bytes]],
        crypto_select: Callable[[CryptoMethod], int],
    ) -> None:
        """Run the receiving side of the handshake.

        ``get_skey`` maps the hash sent by the initiator (see ``hash_skey``) to
        the stream key, or returns None if it is unknown. ``crypto_select``
        picks one method from the provided ones, or returns 0 to refuse.
        An initial payload sent by the initiator is returned by the next reads.
        """
        xb, yb = _key_pair()

        # Step 1: A->B: Ya, PadA
        received = self._read_at_least(_KEY_SIZE, _KEY_SIZE + _MAX_PAD)
        first_read = len(received)
        ya = int.from_bytes(received[:_KEY_SIZE], "big")
        secret = pow(ya, xb, _P)

        # Step 2: B->A: Yb, PadB
        self.raw.write(_bytes_with_pad(yb) + _pad_random())

        # Step 3: A->B: HASH('req1', S), HASH('req2', SKEY) xor HASH('req3', S),
        # ENCRYPT(VC, crypto_provide, len(PadC), PadC, len(IA)), ENCRYPT(IA)
        req1 = _hash_int(b"req1", secret)
        self._read_sync(req1, _KEY_SIZE + _MAX_PAD + len(req1) - first_read)
        skey_hash = _xor(self._read_raw_exactly(20), _hash_int(b"req3", secret))
        skey = get_skey(skey_hash)
        if skey is None:
            raise MSEError("invalid SKEY hash")
        self._init_rc4(b"keyB", b"keyA", secret, bytes(skey))
        vc_read = self._read_decrypted(len(_VC))
        if vc_read != _VC:
            raise MSEError(f"invalid VC: {vc_read.hex()}")
        provide = self._read_uint(4)
        if provide == 0:
            raise MSEError("no crypto methods are provided")
        selected = int(crypto_select(CryptoMethod(provide)))
        _check_selected(selected, provide, "selected crypto is not provided")
        pad_c_length = self._read_uint(2)
        self._read_decrypted(pad_c_length)
        ia_length = self._read_uint(2)
        initial_payload = self._read_decrypted(ia_length)

        # Step 4: B->A: ENCRYPT(VC, crypto_select, len(padD), padD)
        pad_d = _pad_zero()
        reply = b"".join(
            [_VC, selected.to_bytes(4, "big"), len(pad_d).to_bytes(2, "big"), pad_d]
        )
        self.raw.write(self._enc.process(reply))

        self._update_cipher(selected)
        self._pending = initial_payload

    # -- payload stream ----------------------------------------------------

    def _check_ready(self) -> None:
        if not self._ready:
            raise MSEError("handshake has not been completed")

    def read(self, n: int) -> bytes:
        """Return at most ``n`` decrypted bytes; an empty result means end of stream."""
        self._check_ready()
        if n <= 0:
            return b""
        if self._pending:
            chunk, self._pending = self._pending[:n], self._pending[n:]
            return chunk
        return self._decrypt(self.raw.read(n))

    def read_exactly(self, n: int) -> bytes:
        """Return exactly ``n`` decrypted bytes or raise EOFError."""
        buf = bytearray()
        while len(buf) < n:
            chunk = self.read(n - len(buf))
            if not chunk:
                raise EOFError("unexpected end of stream")
            buf += chunk
        return bytes(buf)

    def write(self, data: bytes) -> None:
        """Encrypt ``data`` and write it to the transport."""
        self._check_ready()
        self.raw.write(self._encrypt(bytes(data)))


def wrap_socket(sock: socket.socket) -> Stream:
    """Return a Stream over a connected socket. A handshake must be run first."""
    return Stream(SocketTransport(sock))