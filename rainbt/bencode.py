"""Encoding and decoding of bencoded data (BEP 3)."""

from __future__ import annotations

import re
from typing import Any

_INTEGER = re.compile(rb"-?(?:0|[1-9][0-9]*)")
_LENGTH = re.compile(rb"0|[1-9][0-9]*")


class BencodeError(ValueError):
    """Raised when data cannot be encoded or decoded."""


def encode(value: Any) -> bytes:
    """Encode ints, bools, bytes, str, lists, tuples and dicts.

    Dictionary keys may be str or bytes and are written in sorted order.
    """
    out = bytearray()
    _encode(value, out)
    return bytes(out)


def _key_bytes(key: Any) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray)):
        return bytes(key)
    raise BencodeError(f"dictionary key must be str or bytes, not {type(key).__name__}")


def _encode(value: Any, out: bytearray) -> None:
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, int):
        out += b"i%de" % value
    elif isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        out += b"%d:" % len(data)
        out += data
    elif isinstance(value, str):
        _encode(value.encode("utf-8"), out)
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode(item, out)
        out += b"e"
    elif isinstance(value, dict):
        items: dict[bytes, Any] = {}
        for key, item in value.items():
            raw_key = _key_bytes(key)
            if raw_key in items:
                raise BencodeError(f"duplicate dictionary key: {raw_key!r}")
            items[raw_key] = item
        out += b"d"
        for raw_key in sorted(items):
            _encode(raw_key, out)
            _encode(items[raw_key], out)
        out += b"e"
    else:
        raise BencodeError(f"cannot encode value of type {type(value).__name__}")


def _scan(data: bytes, pos: int) -> tuple[Any, int]:
    """Decode one value starting at ``pos``; return it and the position after it."""
    if pos >= len(data):
        raise BencodeError("unexpected end of data")
    lead = data[pos]
    if lead == ord("i"):
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise BencodeError("unterminated integer")
        text = data[pos + 1 : end]
        if not _INTEGER.fullmatch(text) or text == b"-0":
            raise BencodeError(f"invalid integer: {text!r}")
        return int(text), end + 1
    if lead == ord("l"):
        pos += 1
        items = []
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated list")
            if data[pos] == ord("e"):
                return items, pos + 1
            item, pos = _scan(data, pos)
            items.append(item)
    if lead == ord("d"):
        pos += 1
        result: dict[bytes, Any] = {}
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated dictionary")
            if data[pos] == ord("e"):
                return result, pos + 1
            key, pos = _scan(data, pos)
            if not isinstance(key, bytes):
                raise BencodeError("dictionary key must be a string")
            value, pos = _scan(data, pos)
            result[key] = value
    if ord("0") <= lead <= ord("9"):
        colon = data.find(b":", pos)
        if colon < 0:
            raise BencodeError("unterminated string length")
        text = data[pos:colon]
        if not _LENGTH.fullmatch(text):
            raise BencodeError(f"invalid string length: {text!r}")
        start = colon + 1
        end = start + int(text)
        if end > len(data):
            raise BencodeError("string is longer than the data")
        return data[start:end], end
    raise BencodeError(f"invalid token {chr(lead)!r} at offset {pos}")


def decode(data: bytes) -> Any:
    """Decode a single bencoded value. Strings decode to bytes, dict keys too."""
    data = bytes(data)
    value, end = _scan(data, 0)
    if end != len(data):
        raise BencodeError("trailing data after value")
    return value


def _raw_dict(data: bytes) -> dict[bytes, bytes]:
    """Split a top-level dictionary into its keys and the raw bytes of each value.

    Data after the dictionary is ignored.
    """
    data = bytes(data)
    if not data or data[0] != ord("d"):
        raise BencodeError("value is not a dictionary")
    pos = 1
    result: dict[bytes, bytes] = {}
    while True:
        if pos >= len(data):
            raise BencodeError("unterminated dictionary")
        if data[pos] == ord("e"):
            return result
        key, pos = _scan(data, pos)
        if not isinstance(key, bytes):
            raise BencodeError("dictionary key must be a string")
        _, end = _scan(data, pos)
        result[key] = data[pos:end]
        pos = end