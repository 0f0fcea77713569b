"""
Advertised Address Selection

A server with more than one network address has to pick ONE to put in
its replies. Enumeration of the host's interfaces is done with psutil;
the choice itself is a pure function of the enumerated list so it can be
tested without touching the OS.

Selection rules:
1. Walk candidates in enumeration order
2. Skip loopback and link-local addresses
3. Take the first remaining dotted-quad (IPv4) address
4. Otherwise fall back to the address the local host name resolves to
5. Otherwise there is nothing to advertise
"""

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import psutil

from ..errors import NoAdvertisableAddressError

logger = logging.getLogger(__name__)

IPV4_PATTERN = re.compile(r"\d+(\.\d+){3}")


@dataclass(frozen=True)
class LocalAddress:
    """One address of a local network interface."""
    address: str
    interface: str = ''
    is_loopback: bool = False
    is_link_local: bool = False
    is_ipv4: bool = True

    @classmethod
    def from_string(cls, address: str, interface: str = '') -> 'LocalAddress':
        """Build a LocalAddress, deriving the flags from the address itself."""
        # IPv6 link-local addresses may carry a zone suffix ("fe80::1%eth0")
        ip = ipaddress.ip_address(address.split('%', 1)[0])
        return cls(
            address=address,
            interface=interface,
            is_loopback=ip.is_loopback,
            is_link_local=ip.is_link_local,
            is_ipv4=ip.version == 4,
        )


def resolve_local_host() -> Optional[str]:
    """Return the address the local host name resolves to, or None."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError as e:
        logger.warning(f"Could not resolve local host name: {e}")
        return None


def enumerate_local_addresses() -> List[LocalAddress]:
    """
    Return all addresses of interfaces that are up and not loopback.

    Order follows psutil's interface order, then the order of addresses
    within each interface.
    """
    stats = psutil.net_if_stats()
    addresses: List[LocalAddress] = []

    for iface, addrs in psutil.net_if_addrs().items():
        iface_stats = stats.get(iface)
        if iface_stats is None or not iface_stats.isup:
            continue

        iface_addrs = [
            LocalAddress.from_string(a.address, iface)
            for a in addrs
            if a.family in (socket.AF_INET, socket.AF_INET6)
        ]

        # filters out lo / lo0
        if 'loopback' in getattr(iface_stats, 'flags', '').split(','):
            continue
        if iface_addrs and all(a.is_loopback for a in iface_addrs):
            continue

        addresses.extend(iface_addrs)

    return addresses


def select_address(
    candidates: Iterable[LocalAddress],
    resolve_local_host: Optional[Callable[[], Optional[str]]] = resolve_local_host,
) -> Optional[str]:
    """
    Pick the address a server should advertise.

    Args:
        candidates: Local addresses in enumeration order
        resolve_local_host: Fallback used when no candidate qualifies.
                            Pass None to disable the fallback.

    Returns:
        The chosen address, or None if nothing qualifies
    """
    for candidate in candidates:
        if candidate.is_loopback or candidate.is_link_local:
            continue
        if IPV4_PATTERN.fullmatch(candidate.address):
            return candidate.address

    if resolve_local_host is None:
        return None

    fallback = resolve_local_host()
    if fallback:
        logger.info(f"No interface address qualified, using local host address {fallback}")
    return fallback or None


def resolve_advertised_address(
    candidates: Optional[Iterable[LocalAddress]] = None,
    resolve_local_host: Optional[Callable[[], Optional[str]]] = resolve_local_host,
) -> str:
    """
    Enumerate (unless candidates are given) and select the advertised address.

    Raises:
        NoAdvertisableAddressError: If no address qualifies
    """
    if candidates is None:
        candidates = enumerate_local_addresses()
    candidates = list(candidates)

    address = select_address(candidates, resolve_local_host)
    if address is None:
        listed = ', '.join(c.address for c in candidates) or 'none'
        raise NoAdvertisableAddressError(
            f"No advertisable address found (candidates: {listed})"
        )
    return address


def describe_address(addr: LocalAddress) -> str:
    """Render an address with its LinkLocal / Loopback markers."""
    text = addr.address
    if addr.is_link_local:
        text += " (LinkLocal)"
    if addr.is_loopback:
        text += " (Loopback)"
    return text
