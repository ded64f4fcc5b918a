"""Parsing and formatting of magnet links."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from urllib.parse import parse_qs, quote_plus, urlsplit


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    value = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("invalid multihash: truncated varint")
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
        shift += 7
        if shift > 63:
            raise ValueError("invalid multihash: varint too long")


def _multihash_from_hex(text: str) -> bytes:
    data = binascii.unhexlify(text)
    _, pos = _read_uvarint(data, 0)
    length, pos = _read_uvarint(data, pos)
    if len(data) - pos != length:
        raise ValueError("invalid multihash: inconsistent length")
    return data


def _info_hash(xt: str) -> bytes:
    if xt.startswith("urn:btih:"):
        value = xt[9:]
        if len(value) == 40:
            return binascii.unhexlify(value)
        if len(value) == 32:
            return base64.b32decode(value)
        raise ValueError("info hash must be 32 or 40 characters")
    if xt.startswith("urn:btmh:"):
        data = _multihash_from_hex(xt[9:])
        if len(data) != 20:
            raise ValueError("invalid multihash (len != 20)")
        return data
    raise ValueError('invalid xt param: must start with "urn:btih:" or "urn:btmh"')


@dataclass
class Magnet:
    """Information needed to fetch torrent metadata from the network."""

    info_hash: bytes
    name: str = ""
    trackers: list[list[str]] = field(default_factory=list)
    peers: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, link: str) -> Magnet:
        """Parse a magnet link. Raises ValueError if it is not a valid one."""
        parts = urlsplit(link)
        if parts.scheme != "magnet":
            raise ValueError("not a magnet link")
        params = parse_qs(parts.query, keep_blank_values=True)

        if "xt" not in params:
            raise ValueError("missing xt param")
        xts = params["xt"]
        if not xts:
            raise ValueError("empty xt param")
        info_hash = _info_hash(xts[0])

        names = params.get("dn", [])
        name = names[0] if names else ""

        tiers: list[tuple[int, list[str]]] = []
        for key, values in params.items():
            if key == "tr":
                tiers.extend((i - len(values), [value]) for i, value in enumerate(values))
            elif key.startswith("tr."):
                suffix = key[3:]
                try:
                    index = int(suffix)
                except ValueError:
                    continue
                if index >= 0:
                    tiers.append((index, list(values)))
        tiers.sort(key=lambda tier: tier[0])

        return cls(
            info_hash=info_hash,
            name=name,
            trackers=[trackers for _, trackers in tiers],
            peers=list(params.get("x.pe", [])),
        )

    def __str__(self) -> str:
        parts = ["magnet:?xt=urn:btih:", self.info_hash.hex()]
        if self.name:
            parts += ["&dn=", quote_plus(self.name, safe="")]
        for index, tier in enumerate(self.trackers):
            if len(tier) == 1:
                parts += ["&tr=", quote_plus(tier[0], safe="")]
            else:
                for tracker in tier:
                    parts += [f"&tr.{index}=", quote_plus(tracker, safe="")]
        for peer in self.peers:
            parts += ["&x.pe=", peer]
        return "".join(parts)