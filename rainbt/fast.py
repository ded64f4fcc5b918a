"""Allowed-fast set generation (BEP 6)."""

from __future__ import annotations

import hashlib
import ipaddress
from typing import Optional, Union

IPLike = Union[str, bytes, ipaddress.IPv4Address, ipaddress.IPv6Address]


def _to_ipv4(ip: IPLike) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = ip
    else:
        addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    return addr.ipv4_mapped


def generate_fast_set(k: int, num_pieces: int, info_hash: bytes, ip: IPLike) -> list[int]:
    """Return up to ``k`` distinct piece indexes for the peer at ``ip``.

    An empty list is returned when ``ip`` is not an IPv4 address.
    """
    addr = _to_ipv4(ip)
    if addr is None:
        return []
    masked = int(addr) & 0xFFFFFF00
    x = masked.to_bytes(4, "big") + bytes(info_hash[:20]).ljust(20, b"\x00")

    result: list[int] = []
    seen: set[int] = set()
    for _ in range(k):
        if len(result) >= k:
            break
        x = hashlib.sha1(x).digest()
        for i in range(0, 20, 4):
            if len(result) >= k:
                break
            index = int.from_bytes(x[i : i + 4], "big") % num_pieces
            if index not in seen:
                seen.add(index)
                result.append(index)
    return result