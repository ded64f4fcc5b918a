"""Discovery of the public IPv4 addresses of local network interfaces."""

from __future__ import annotations

import functools
import ipaddress
import logging
import socket
from typing import Optional, Union

import psutil

log = logging.getLogger(__name__)

IPLike = Union[str, bytes, ipaddress.IPv4Address, ipaddress.IPv6Address]

_LINK_LOCAL_MULTICAST = ipaddress.IPv4Network("224.0.0.0/24")


def _to_ipv4(ip: IPLike) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = ip
    else:
        addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    return addr.ipv4_mapped


def is_public_ip(ip: IPLike) -> bool:
    """Return True if the IPv4 address is not loopback, link-local or private."""
    addr = _to_ipv4(ip)
    if addr is None:
        raise ValueError("not an IPv4 address")
    if addr.is_loopback or addr.is_link_local or addr in _LINK_LOCAL_MULTICAST:
        return False
    first, second = addr.packed[0], addr.packed[1]
    if first == 10:
        return False
    if first == 172 and 16 <= second <= 31:
        return False
    if first == 192 and second == 168:
        return False
    return True


@functools.lru_cache(maxsize=None)
def _external_ips() -> tuple[ipaddress.IPv4Address, ...]:
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, RuntimeError) as exc:
        log.warning("cannot get interface addresses: %s", exc)
        return ()
    found = []
    for addresses in interfaces.values():
        for entry in addresses:
            if entry.family != socket.AF_INET:
                continue
            try:
                addr = ipaddress.IPv4Address(entry.address)
            except ValueError:
                continue
            if is_public_ip(addr):
                found.append(addr)
    return tuple(found)


def is_external(ip: IPLike) -> bool:
    """Return True if ``ip`` is one of this host's public interface addresses."""
    addr = _to_ipv4(ip)
    if addr is None:
        return False
    return addr in _external_ips()


def first_external_ip() -> Optional[ipaddress.IPv4Address]:
    """Return the first public interface address, or None if there is none."""
    ips = _external_ips()
    return ips[0] if ips else None