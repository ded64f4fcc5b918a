import socket
from concurrent.futures import ThreadPoolExecutor

import pytest

from rainbt import mse
from rainbt.btconn import (
    Connection,
    HandshakeError,
    accept,
    build_handshake,
    dial,
    read_handshake1,
    read_handshake2,
)
from rainbt.mse import CryptoMethod

EXT1 = bytes([0x0A]) + bytes(7)
EXT2 = bytes([0x0B]) + bytes(7)
ID1 = bytes([0x0C]) + bytes(19)
ID2 = bytes([0x0D]) + bytes(19)
INFO_HASH = bytes([0x0E]) + bytes(19)
SKEY_HASH = mse.hash_skey(INFO_HASH)


@pytest.fixture
def listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(5)
    sock.settimeout(10)
    yield sock
    sock.close()


def _addr(listener):
    return ("127.0.0.1", listener.getsockname()[1])


def _get_skey(h):
    return INFO_HASH if h == SKEY_HASH else None


class _BytesReader:
    def __init__(self, data):
        self._data = data

    def read_exactly(self, n):
        if len(self._data) < n:
            raise EOFError("short")
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


def test_build_handshake_wire_format():
    msg = build_handshake(INFO_HASH, ID1, EXT1)
    assert len(msg) == 68
    assert msg[:20] == b"\x13BitTorrent protocol"
    assert msg[20:28] == EXT1
    assert msg[28:48] == INFO_HASH
    assert msg[48:] == ID1


def test_build_handshake_rejects_bad_lengths():
    with pytest.raises(ValueError):
        build_handshake(b"short", ID1, EXT1)


def test_read_handshake_round_trip():
    reader = _BytesReader(build_handshake(INFO_HASH, ID2, EXT2))
    assert read_handshake1(reader) == (EXT2, INFO_HASH)
    assert read_handshake2(reader) == ID2


def test_read_handshake1_invalid_protocol():
    reader = _BytesReader(b"\x13BitTorrent protocoX" + bytes(48))
    with pytest.raises(HandshakeError) as info:
        read_handshake1(reader)
    assert str(info.value) == "invalid protocol"


def test_read_handshake1_truncated():
    with pytest.raises(EOFError):
        read_handshake1(_BytesReader(b"\x13BitTorrent"))


def test_unencrypted(listener):
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(
            dial, _addr(listener), 10, 10, False, False, EXT1, INFO_HASH, ID1, None
        )
        sock, _ = listener.accept()
        result = accept(sock, 10, None, False, lambda ih: ih == INFO_HASH, EXT2, ID2)
        dialed = future.result(timeout=10)
    try:
        assert result.cipher == 0
        assert result.extensions == EXT1
        assert result.info_hash == INFO_HASH
        assert result.peer_id == ID1
        assert isinstance(dialed.connection, Connection)
        assert dialed.cipher == 0
        assert dialed.extensions == EXT2
        assert dialed.peer_id == ID2
    finally:
        result.connection.close()
        dialed.connection.close()


def test_encrypted(listener):
    def dial_and_talk():
        res = dial(_addr(listener), 10, 10, True, True, EXT1, INFO_HASH, ID1, None)
        res.connection.write(b"hello out")
        received = res.connection.read_exactly(8)
        return res, received

    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(dial_and_talk)
        sock, _ = listener.accept()
        result = accept(sock, 10, _get_skey, False, lambda ih: ih == INFO_HASH, EXT2, ID2)
        try:
            assert result.cipher == CryptoMethod.RC4
            assert result.extensions == EXT1
            assert result.info_hash == INFO_HASH
            assert result.peer_id == ID1
            assert result.connection.read_exactly(9) == b"hello out"
            result.connection.write(b"hello in")
            dialed, received = future.result(timeout=10)
        finally:
            result.connection.close()
    dialed.connection.close()
    assert dialed.cipher == CryptoMethod.RC4
    assert dialed.extensions == EXT2
    assert dialed.peer_id == ID2
    assert received == b"hello in"


def test_dial_falls_back_to_plain(listener):
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(
            dial, _addr(listener), 10, 10, True, False, EXT1, INFO_HASH, ID1, None
        )
        first, _ = listener.accept()
        with pytest.raises(HandshakeError):
            accept(first, 10, None, False, lambda ih: True, EXT2, ID2)
        first.close()
        second, _ = listener.accept()
        result = accept(second, 10, None, False, lambda ih: ih == INFO_HASH, EXT2, ID2)
        dialed = future.result(timeout=10)
    result.connection.close()
    dialed.connection.close()
    assert dialed.cipher == 0
    assert dialed.peer_id == ID2
    assert result.peer_id == ID1


def test_accept_rejects_unknown_info_hash(listener):
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(
            dial, _addr(listener), 10, 10, False, False, EXT1, INFO_HASH, ID1, None
        )
        sock, _ = listener.accept()
        with pytest.raises(HandshakeError) as info:
            accept(sock, 10, None, False, lambda ih: False, EXT2, ID2)
        sock.close()
        with pytest.raises((EOFError, OSError)):
            future.result(timeout=10)
    assert str(info.value) == "invalid info hash"


def test_own_connection_is_dropped(listener):
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(
            dial, _addr(listener), 10, 10, False, False, EXT1, INFO_HASH, ID1, None
        )
        sock, _ = listener.accept()
        with pytest.raises(HandshakeError) as accepted_error:
            accept(sock, 10, None, False, lambda ih: True, EXT2, ID1)
        sock.close()
        with pytest.raises(HandshakeError) as dialed_error:
            future.result(timeout=10)
    assert str(accepted_error.value) == "dropped own connection"
    assert str(dialed_error.value) == "dropped own connection"


def test_forced_encryption_rejects_plain_peer(listener):
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(
            dial, _addr(listener), 10, 10, False, False, EXT1, INFO_HASH, ID1, None
        )
        sock, _ = listener.accept()
        with pytest.raises(HandshakeError) as info:
            accept(sock, 10, _get_skey, True, lambda ih: True, EXT2, ID2)
        sock.close()
        with pytest.raises((EOFError, OSError)):
            future.result(timeout=10)
    assert str(info.value) == "connection is not encrypted"


def test_force_encryption_requires_skey():
    a, b = socket.socketpair()
    try:
        with pytest.raises(ValueError):
            accept(a, 1, None, True, lambda ih: True, EXT2, ID2)
    finally:
        a.close()
        b.close()