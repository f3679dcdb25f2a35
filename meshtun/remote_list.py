"""A cache of the real addresses a mesh peer may be reached at.

Addresses arrive from several sources: learned from packets a peer sent,
reported by lighthouses, or configured statically. A ``RemoteList`` keeps
them per owner, so that it knows who said what. On request it produces one
sorted, deduplicated list with blocked addresses left out.
"""

from __future__ import annotations

import ipaddress
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
VpnIpLike = Union[int, str, ipaddress.IPv4Address]

# How many reported addresses or relays are kept per owner by default.
MAX_REMOTES = 10

_PRIVATE_BLOCKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def _to_ip(value: str | int | IPAddress) -> IPAddress:
    ip = value if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)) else ipaddress.ip_address(value)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _vpn_ip(value: VpnIpLike) -> ipaddress.IPv4Address:
    ip = value if isinstance(value, ipaddress.IPv4Address) else ipaddress.IPv4Address(value)
    return ip


@dataclass(frozen=True)
class UdpAddr:
    """An IP address and UDP port. IPv4-mapped IPv6 addresses are stored as IPv4."""

    ip: IPAddress
    port: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip", _to_ip(self.ip))
        if not 0 <= self.port <= 0xFFFFFFFF:
            raise ValueError(f"port out of range: {self.port}")

    @property
    def is_v4(self) -> bool:
        return self.ip.version == 4

    def __str__(self) -> str:
        if self.is_v4:
            return f"{self.ip}:{self.port}"
        return f"[{self.ip}]:{self.port}"


@dataclass
class CacheEntry:
    """What one owner has told us, in a form meant for people to read."""

    learned: list[UdpAddr] = field(default_factory=list)
    reported: list[UdpAddr] = field(default_factory=list)
    relay: list[ipaddress.IPv4Address] = field(default_factory=list)


@dataclass
class _FamilyCache:
    learned: UdpAddr | None = None
    reported: list[UdpAddr] = field(default_factory=list)


@dataclass
class _OwnerCache:
    v4: _FamilyCache | None = None
    v6: _FamilyCache | None = None
    relay: list[ipaddress.IPv4Address] | None = None


def is_preferred(ip: str | IPAddress, preferred_ranges: Iterable[IPNetwork]) -> bool:
    """Return True when ``ip`` lies in any of ``preferred_ranges``."""
    address = _to_ip(ip)
    return any(address in network for network in preferred_ranges)


def is_private_ip(ip: str | IPAddress) -> bool:
    """Return True when ``ip`` is an IPv4 address in an RFC 1918 private range."""
    address = _to_ip(ip)
    if address.version != 4:
        return False
    return any(address in block for block in _PRIVATE_BLOCKS)


def _sort_key(addr: UdpAddr, preferred_ranges: list[IPNetwork]) -> tuple:
    preferred = is_preferred(addr.ip, preferred_ranges)
    # Preferred first, then IPv6, then public IPv4 before private IPv4,
    # then by address bytes and finally by port.
    private = is_private_ip(addr.ip) if addr.is_v4 else False
    return (not preferred, addr.is_v4, private, addr.ip.packed, addr.port)


class RemoteList:
    """A thread-safe cache of the real addresses known for one peer."""

    def __init__(self, max_remotes: int = MAX_REMOTES) -> None:
        self._max_remotes = max_remotes
        self._lock = threading.RLock()
        self._addrs: list[UdpAddr] = []
        self._relays: list[ipaddress.IPv4Address] = []
        self._cache: dict[ipaddress.IPv4Address, _OwnerCache] = {}
        self._bad: list[UdpAddr] = []
        self._should_rebuild = False

    def addrs(self) -> list[UdpAddr]:
        """Return the deduplicated list as of the last rebuild."""
        with self._lock:
            return list(self._addrs)

    def count(self, preferred_ranges: Iterable[IPNetwork]) -> int:
        """Rebuild if needed and return the size of the deduplicated list."""
        with self._lock:
            self.rebuild(preferred_ranges)
            return len(self._addrs)

    def iter_addrs(self, preferred_ranges: Iterable[IPNetwork]) -> Iterator[tuple[UdpAddr, bool]]:
        """Rebuild if needed and yield each address with whether it is preferred."""
        ranges = list(preferred_ranges)
        with self._lock:
            self.rebuild(ranges)
            snapshot = list(self._addrs)
        for addr in snapshot:
            yield addr, is_preferred(addr.ip, ranges)

    def copy_addrs(self, preferred_ranges: Iterable[IPNetwork]) -> list[UdpAddr]:
        """Rebuild if needed and return a copy of the deduplicated list."""
        with self._lock:
            self.rebuild(preferred_ranges)
            return list(self._addrs)

    def learn_remote(self, owner: VpnIpLike, addr: UdpAddr) -> None:
        """Record ``addr`` as the address learned from ``owner``."""
        with self._lock:
            self._should_rebuild = True
            family = self._v4(owner) if addr.is_v4 else self._v6(owner)
            family.learned = addr

    def copy_cache(self) -> dict[str, CacheEntry]:
        """Return the cache keyed by owner; it may hold duplicates and blocked addresses."""
        with self._lock:
            result: dict[str, CacheEntry] = {}
            for owner, cached in self._cache.items():
                entry = result.setdefault(str(owner), CacheEntry())
                for family in (cached.v4, cached.v6):
                    if family is None:
                        continue
                    if family.learned is not None:
                        entry.learned.append(family.learned)
                    entry.reported.extend(family.reported)
                if cached.relay is not None:
                    entry.relay.extend(cached.relay)
            return result

    def block_remote(self, bad: UdpAddr | None) -> None:
        """Exclude ``bad`` from the deduplicated list from the next rebuild on."""
        if bad is None:
            # Relayed hosts may have no address at all.
            return
        with self._lock:
            if bad in self._bad:
                return
            self._bad.append(bad)
            self._should_rebuild = True

    def copy_blocked_remotes(self) -> list[UdpAddr]:
        """Return a copy of the blocked addresses."""
        with self._lock:
            return list(self._bad)

    def reset_blocked_remotes(self) -> None:
        """Forget every blocked address."""
        with self._lock:
            self._bad = []

    def rebuild(self, preferred_ranges: Iterable[IPNetwork]) -> None:
        """Recollect the list if the cache changed, then sort and deduplicate it."""
        ranges = list(preferred_ranges)
        with self._lock:
            if self._should_rebuild:
                self._collect()
                self._should_rebuild = False
            # Always sort again: the preferred ranges may have changed.
            self._sort(ranges)

    def set_reported_v4(
        self,
        owner: VpnIpLike,
        vpn_ip: VpnIpLike,
        addrs: Iterable[UdpAddr],
        check: Callable[[VpnIpLike, UdpAddr], bool] | None = None,
    ) -> None:
        """Replace the IPv4 addresses ``owner`` reported for ``vpn_ip``."""
        self._set_reported(owner, vpn_ip, addrs, check, 4)

    def set_reported_v6(
        self,
        owner: VpnIpLike,
        vpn_ip: VpnIpLike,
        addrs: Iterable[UdpAddr],
        check: Callable[[VpnIpLike, UdpAddr], bool] | None = None,
    ) -> None:
        """Replace the IPv6 addresses ``owner`` reported for ``vpn_ip``."""
        self._set_reported(owner, vpn_ip, addrs, check, 6)

    def set_relays(self, owner: VpnIpLike, vpn_ip: VpnIpLike, relays: Iterable[VpnIpLike]) -> None:
        """Replace the relays ``owner`` reported for ``vpn_ip``."""
        with self._lock:
            self._should_rebuild = True
            cached = self._owner(owner)
            cached.relay = [_vpn_ip(r) for r in list(relays)[: self._max_remotes]]

    def prepend_v4(self, owner: VpnIpLike, addr: UdpAddr) -> None:
        """Put ``addr`` first among the IPv4 addresses reported by ``owner``."""
        self._prepend(owner, addr, 4)

    def prepend_v6(self, owner: VpnIpLike, addr: UdpAddr) -> None:
        """Put ``addr`` first among the IPv6 addresses reported by ``owner``."""
        self._prepend(owner, addr, 6)

    def _set_reported(self, owner, vpn_ip, addrs, check, version: int) -> None:
        chosen = list(addrs)[: self._max_remotes]
        for addr in chosen:
            if addr.ip.version != version:
                raise ValueError(f"expected an IPv{version} address, got {addr}")
        with self._lock:
            self._should_rebuild = True
            family = self._v4(owner) if version == 4 else self._v6(owner)
            family.reported = [a for a in chosen if check is None or check(vpn_ip, a)]

    def _prepend(self, owner, addr: UdpAddr, version: int) -> None:
        if addr.ip.version != version:
            raise ValueError(f"expected an IPv{version} address, got {addr}")
        with self._lock:
            self._should_rebuild = True
            family = self._v4(owner) if version == 4 else self._v6(owner)
            family.reported = ([addr] + family.reported)[: self._max_remotes]

    def _owner(self, owner: VpnIpLike) -> _OwnerCache:
        return self._cache.setdefault(_vpn_ip(owner), _OwnerCache())

    def _v4(self, owner: VpnIpLike) -> _FamilyCache:
        cached = self._owner(owner)
        if cached.v4 is None:
            cached.v4 = _FamilyCache()
        return cached.v4

    def _v6(self, owner: VpnIpLike) -> _FamilyCache:
        cached = self._owner(owner)
        if cached.v6 is None:
            cached.v6 = _FamilyCache()
        return cached.v6

    def _collect(self) -> None:
        addrs: list[UdpAddr] = []
        relays: list[ipaddress.IPv4Address] = []
        for cached in self._cache.values():
            for family in (cached.v4, cached.v6):
                if family is None:
                    continue
                candidates = ([family.learned] if family.learned is not None else []) + family.reported
                addrs.extend(a for a in candidates if a not in self._bad)
            if cached.relay is not None:
                relays.extend(cached.relay)
        self._addrs = addrs
        self._relays = relays

    def _sort(self, preferred_ranges: list[IPNetwork]) -> None:
        if len(self._addrs) < 2:
            return
        ordered = sorted(self._addrs, key=lambda a: _sort_key(a, preferred_ranges))
        deduped: list[UdpAddr] = []
        for addr in ordered:
            if not deduped or deduped[-1] != addr:
                deduped.append(addr)
        self._addrs = deduped