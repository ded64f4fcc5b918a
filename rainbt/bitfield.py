"""Fixed-length bit arrays as used by the peer wire protocol (BEP 3)."""

from __future__ import annotations


def num_bytes(length: int) -> int:
    """Return the number of bytes needed to hold ``length`` bits."""
    return (length + 7) // 8


class Bitfield:
    """A sequence of bits where bit 0 is the most significant bit of the first byte."""

    __slots__ = ("_bytes", "_length")

    def __init__(self, length: int) -> None:
        if length < 0:
            raise ValueError("length must not be negative")
        self._length = length
        self._bytes = bytearray(num_bytes(length))

    @classmethod
    def from_bytes(cls, data: bytes, length: int) -> Bitfield:
        """Build a bitfield of ``length`` bits from ``data``.

        ``data`` must be exactly as long as needed. Unused bits in the last
        byte are cleared.
        """
        if length < 0:
            raise ValueError("length must not be negative")
        div, mod = divmod(length, 8)
        required = div + (1 if mod else 0)
        if len(data) != required:
            raise ValueError("invalid length")
        bitfield = cls.__new__(cls)
        bitfield._length = length
        bitfield._bytes = bytearray(data)
        if mod:
            bitfield._bytes[-1] &= ~(0xFF >> mod) & 0xFF
        return bitfield

    def copy(self) -> Bitfield:
        """Return an independent copy."""
        return Bitfield.from_bytes(bytes(self._bytes), self._length)

    def __len__(self) -> int:
        return self._length

    def __bytes__(self) -> bytes:
        return bytes(self._bytes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitfield):
            return NotImplemented
        return self._length == other._length and self._bytes == other._bytes

    def __repr__(self) -> str:
        return f"Bitfield(length={self._length}, hex={self.hex()!r})"

    def hex(self) -> str:
        """Return the bytes as a lower-case hex string."""
        return self._bytes.hex()

    def _check_index(self, i: int) -> None:
        if i < 0 or i >= self._length:
            raise IndexError("index out of bound")

    def set(self, i: int) -> None:
        """Set bit ``i``."""
        self._check_index(i)
        div, mod = divmod(i, 8)
        self._bytes[div] |= 1 << (7 - mod)

    def clear(self, i: int) -> None:
        """Clear bit ``i``."""
        self._check_index(i)
        div, mod = divmod(i, 8)
        self._bytes[div] &= ~(1 << (7 - mod)) & 0xFF

    def test(self, i: int) -> bool:
        """Return whether bit ``i`` is set."""
        self._check_index(i)
        div, mod = divmod(i, 8)
        return bool(self._bytes[div] & (1 << (7 - mod)))

    def count(self) -> int:
        """Return the number of set bits."""
        return int.from_bytes(self._bytes, "big").bit_count()

    def all(self) -> bool:
        """Return True if every bit is set."""
        return self.count() == self._length