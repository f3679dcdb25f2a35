"""Routes carried by the overlay device, read from the ``tun`` settings.

``tun.routes`` lists routes inside the certificate's network that need a
different MTU. ``tun.unsafe_routes`` lists networks outside it that are
reached through a mesh host given by ``via``.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPv4Like = Union[int, str, ipaddress.IPv4Address]

_MISSING = object()
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT32_MAX = 2**31 - 1
_MIN_MTU = 500


class RouteError(ValueError):
    """A route in the settings is missing, malformed or out of place."""


@dataclass
class Route:
    """A route through the overlay device."""

    mtu: int = 0
    metric: int = 0
    cidr: IPNetwork | None = None
    via: ipaddress.IPv4Address | None = None


class RouteTree:
    """Longest prefix match over IPv4 networks."""

    def __init__(self) -> None:
        self._by_length: dict[int, dict[int, Any]] = {}

    def add(self, network: IPNetwork | str, value: Any) -> None:
        """Associate ``value`` with ``network``, replacing any earlier value for it."""
        net = network if isinstance(network, ipaddress.IPv4Network) else ipaddress.IPv4Network(network, strict=False)
        self._by_length.setdefault(net.prefixlen, {})[int(net.network_address)] = value

    def most_specific_contains(self, ip: IPv4Like) -> Any:
        """Return the value of the narrowest network holding ``ip``, or None."""
        address = int(_ipv4(ip))
        for length in sorted(self._by_length, reverse=True):
            mask = (0xFFFFFFFF << (32 - length)) & 0xFFFFFFFF
            found = self._by_length[length].get(address & mask, _MISSING)
            if found is not _MISSING:
                return found
        return None


def _ipv4(ip: IPv4Like) -> ipaddress.IPv4Address:
    return ip if isinstance(ip, ipaddress.IPv4Address) else ipaddress.IPv4Address(ip)


def _network(value: IPNetwork | str) -> IPNetwork:
    if isinstance(value, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return value
    return ipaddress.ip_network(value, strict=False)


def _lookup(settings: Any, key: str) -> Any:
    node = settings
    for part in key.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _format(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _type_name(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "[]string" if all(isinstance(v, str) for v in value) else "[]interface {}"
    if isinstance(value, Mapping):
        return "map[interface {}]interface {}"
    return type(value).__name__


def _parse_int(value: Any, func: str = "Atoi", bits: int = 64) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = value if isinstance(value, str) else _format(value)
    if not _INTEGER.fullmatch(text):
        raise ValueError(f'strconv.{func}: parsing "{text}": invalid syntax')
    number = int(text)
    limit = 2 ** (bits - 1)
    if not -limit <= number < limit:
        raise ValueError(f'strconv.{func}: parsing "{text}": value out of range')
    return number


def _parse_cidr(value: Any, where: str) -> IPNetwork:
    text = _format(value)
    address, slash, prefix = text.partition("/")
    try:
        if not slash or not prefix.isdigit():
            raise ValueError(text)
        return ipaddress.ip_network(text, strict=False)
    except ValueError:
        raise RouteError(f"{where} failed to parse: invalid CIDR address: {text}") from None


def _entries(raw: Any, key: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise RouteError(f"{key} is not an array")
    return list(raw)


def make_route_tree(
    routes: Iterable[Route], allow_mtu: bool, logger: logging.Logger | None = None
) -> RouteTree:
    """Build a tree mapping each routed network to its ``via`` host."""
    log = logger or logging.getLogger(__name__)
    tree = RouteTree()
    for route in routes:
        if not allow_mtu and route.mtu > 0:
            log.warning("route MTU is not supported in %s (route: %s)", sys.platform, route)
        if route.via is not None:
            tree.add(route.cidr, route.via)
    return tree


def parse_routes(settings: Mapping[str, Any], network: IPNetwork | str) -> list[Route]:
    """Read ``tun.routes``; every route must lie inside ``network``."""
    network = _network(network)
    key = "tun.routes"
    routes: list[Route] = []
    for n, entry in enumerate(_entries(_lookup(settings, key), key), start=1):
        if not isinstance(entry, Mapping):
            raise RouteError(f"entry {n} in {key} is invalid")

        if "mtu" not in entry:
            raise RouteError(f"entry {n}.mtu in {key} is not present")
        try:
            mtu = _parse_int(entry["mtu"])
        except ValueError as err:
            raise RouteError(f"entry {n}.mtu in {key} is not an integer: {err}") from None
        if mtu < _MIN_MTU:
            raise RouteError(f"entry {n}.mtu in {key} is below {_MIN_MTU}: {mtu}")

        if "route" not in entry:
            raise RouteError(f"entry {n}.route in {key} is not present")
        cidr = _parse_cidr(entry["route"], f"entry {n}.route in {key}")

        if not ip_within(network, cidr):
            raise RouteError(
                f"entry {n}.route in {key} is not contained within the network attached to the "
                f"certificate; route: {cidr}, network: {network}"
            )
        routes.append(Route(mtu=mtu, cidr=cidr))
    return routes


def parse_unsafe_routes(settings: Mapping[str, Any], network: IPNetwork | str) -> list[Route]:
    """Read ``tun.unsafe_routes``; no route may lie inside ``network``."""
    network = _network(network)
    key = "tun.unsafe_routes"
    routes: list[Route] = []
    for n, entry in enumerate(_entries(_lookup(settings, key), key), start=1):
        if not isinstance(entry, Mapping):
            raise RouteError(f"entry {n} in {key} is invalid")

        mtu = 0
        if "mtu" in entry:
            try:
                mtu = _parse_int(entry["mtu"])
            except ValueError as err:
                raise RouteError(f"entry {n}.mtu in {key} is not an integer: {err}") from None
            if mtu != 0 and mtu < _MIN_MTU:
                raise RouteError(f"entry {n}.mtu in {key} is below {_MIN_MTU}: {mtu}")

        try:
            metric = _parse_int(entry.get("metric", 0), func="ParseInt", bits=32)
        except ValueError as err:
            raise RouteError(f"entry {n}.metric in {key} is not an integer: {err}") from None
        if not 0 <= metric <= _INT32_MAX:
            raise RouteError(f"entry {n}.metric in {key} is not in range (0-{_INT32_MAX}) : {metric}")

        if "via" not in entry:
            raise RouteError(f"entry {n}.via in {key} is not present")
        via = entry["via"]
        if not isinstance(via, str):
            raise RouteError(f"entry {n}.via in {key} is not a string: found {_type_name(via)}")
        try:
            via_ip = ipaddress.ip_address(via)
        except ValueError:
            raise RouteError(f"entry {n}.via in {key} failed to parse address: {via}") from None

        if "route" not in entry:
            raise RouteError(f"entry {n}.route in {key} is not present")
        cidr = _parse_cidr(entry["route"], f"entry {n}.route in {key}")

        if ip_within(network, cidr):
            raise RouteError(
                f"entry {n}.route in {key} is contained within the network attached to the "
                f"certificate; route: {cidr}, network: {network}"
            )
        # Mesh addresses are IPv4; an IPv6 via keeps only its low 32 bits.
        routes.append(
            Route(
                mtu=mtu,
                metric=metric,
                cidr=cidr,
                via=ipaddress.IPv4Address(int(via_ip) & 0xFFFFFFFF),
            )
        )
    return routes


def ip_within(outer: IPNetwork, inner: IPNetwork) -> bool:
    """Return True when the IPv4 network ``inner`` lies wholly inside ``outer``."""
    if inner.version != 4 or outer.version != 4:
        return False
    return inner.network_address in outer and inner.broadcast_address in outer


def adv_mss(route: Route, default_mtu: int, max_mtu: int) -> int:
    """Return the advertised MSS for ``route``, or 0 when its MTU matches the device MTU."""
    mtu = route.mtu or default_mtu
    if mtu != max_mtu:
        return mtu - 40
    return 0