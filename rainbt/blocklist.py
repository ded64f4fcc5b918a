"""IPv4 blocklist loaded from CIDR lines and backed by a segment tree."""

from __future__ import annotations

import ipaddress
import threading
from typing import Callable, IO, Iterable, Optional, Union

from rainbt.stree import SegmentTree

Logger = Callable[..., None]
IPLike = Union[str, bytes, ipaddress.IPv4Address, ipaddress.IPv6Address]


def _to_ipv4(ip: IPLike) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = ip
    else:
        addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    return addr.ipv4_mapped


def parse_cidr(line: Union[str, bytes]) -> tuple[int, int]:
    """Parse an IPv4 CIDR block and return its first and last address as integers."""
    text = line.decode("utf-8", errors="replace") if isinstance(line, (bytes, bytearray)) else line
    address, sep, prefix = text.partition("/")
    if not sep or not prefix.isdigit():
        raise ValueError(f"invalid CIDR address: {text}")
    network = ipaddress.ip_network(f"{address}/{int(prefix)}", strict=False)
    if not isinstance(network, ipaddress.IPv4Network):
        raise ValueError("address is not ipv4")
    first = int(network.network_address)
    last = first | (int(network.netmask) ^ 0xFFFFFFFF)
    return first, last


def _lines(stream: IO) -> Iterable[str]:
    for raw in stream:
        if isinstance(raw, (bytes, bytearray)):
            yield raw.decode("utf-8", errors="replace")
        else:
            yield raw


def _load(stream: IO, logger: Optional[Logger]) -> tuple[SegmentTree, int]:
    tree = SegmentTree()
    count = 0
    has_error = False
    for raw in _lines(stream):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            first, last = parse_cidr(line)
        except ValueError as exc:
            has_error = True
            if logger is not None:
                logger("cannot parse blocklist line (%r): %r", line, str(exc))
            continue
        tree.add_range(first, last)
        count += 1
    if count == 0 and has_error:
        # At least one line must parse before the load is considered good.
        raise ValueError("no valid rules")
    tree.build()
    return tree, count


class Blocklist:
    """Thread-safe set of blocked IPv4 ranges."""

    def __init__(self, logger: Optional[Logger] = None) -> None:
        self._logger = logger
        self._tree = SegmentTree()
        self._count = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def blocked(self, ip: IPLike) -> bool:
        """Return True if ``ip`` falls inside a loaded range. Non-IPv4 addresses are never blocked."""
        addr = _to_ipv4(ip)
        if addr is None:
            return False
        with self._lock:
            return self._tree.contains(int(addr))

    def reload(self, stream: IO) -> int:
        """Replace the rules with those read from ``stream`` and return their count."""
        tree, count = _load(stream, self._logger)
        with self._lock:
            self._tree = tree
            self._count = count
        return count