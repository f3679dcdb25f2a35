"""An overlay device with no operating system interface behind it.

Packets written to it are counted and dropped, except ICMP echo requests,
which are answered: the reply is queued to be read back.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections import deque
from typing import Any, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_MAX_ECHO_LEN = 9001


def ip_checksum(data: bytes) -> int:
    """Return the internet checksum (ones' complement sum of 16 bit words) of ``data``."""
    padded = bytes(data) + (b"\x00" if len(data) % 2 else b"")
    total = sum((high << 8) | low for high, low in zip(padded[0::2], padded[1::2]))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def pretty_packet(data: bytes) -> str:
    """Render ``data`` as hex bytes in groups of eight."""
    parts = []
    for i, byte in enumerate(bytes(data)):
        if i > 0 and i % 8 == 0:
            parts.append(" ")
        parts.append(f"{byte:02x} ")
    return "".join(parts)


class DisabledTun:
    """A device that answers pings and discards every other packet."""

    def __init__(
        self, network: IPNetwork | str, queue_len: int = 500, logger: logging.Logger | None = None
    ) -> None:
        self.network: IPNetwork = (
            network
            if isinstance(network, (ipaddress.IPv4Network, ipaddress.IPv6Network))
            else ipaddress.ip_network(network, strict=False)
        )
        self._queue_len = queue_len
        self._pending: deque[bytes] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._log = logger or logging.getLogger(__name__)
        self.active = False
        self.tx_packets = 0
        self.rx_packets = 0

    def __enter__(self) -> DisabledTun:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def activate(self) -> None:
        """Mark the device as up; there is no interface to configure."""
        with self._cond:
            self.active = True

    def route_for(self, ip: Any) -> int:
        """Return the gateway for ``ip``: always 0, as no routes go through this device.

        Raises ValueError when ``ip`` is not an IP address.
        """
        if not isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            ipaddress.ip_address(ip)
        return 0

    @property
    def name(self) -> str:
        return "disabled"

    def read(self, size: int) -> bytes:
        """Block until a reply is queued and return it; return b"" once closed and drained.

        Raises ValueError when the reply is larger than ``size``.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self._closed)
            if not self._pending:
                return b""
            packet = self._pending.popleft()

        if len(packet) > size:
            raise ValueError(f"packet larger than mtu: {len(packet)} > {size} bytes")

        with self._cond:
            self.tx_packets += 1
        if self._log.isEnabledFor(logging.DEBUG):
            self._log.debug("Write payload raw=%s", pretty_packet(packet))
        return packet

    def write(self, packet: bytes) -> int:
        """Accept ``packet``, answering it when it is an ICMP echo request."""
        with self._cond:
            self.rx_packets += 1

        if self.handle_icmp_echo_request(packet):
            if self._log.isEnabledFor(logging.DEBUG):
                self._log.debug("Disabled tun responded to ICMP Echo Request raw=%s", pretty_packet(packet))
        elif self._log.isEnabledFor(logging.DEBUG):
            self._log.debug("Disabled tun received unexpected payload raw=%s", pretty_packet(packet))
        return len(packet)

    def handle_icmp_echo_request(self, packet: bytes) -> bool:
        """Queue an echo reply if ``packet`` is an unfragmented IPv4 ICMP echo request."""
        packet = bytes(packet)
        if not (
            28 <= len(packet) <= _MAX_ECHO_LEN
            and packet[0] == 0x45
            and packet[9] == 0x01
            and packet[20] == 0x08
        ):
            return False

        # Fragments are not supported.
        if packet[7] != 0 or packet[6] & 0x2F:
            return False

        reply = bytearray(packet)

        # Swap source and destination, then fix the header checksum.
        reply[12:16] = packet[16:20]
        reply[16:20] = packet[12:16]
        reply[10:12] = b"\x00\x00"
        reply[10:12] = ip_checksum(reply[:20]).to_bytes(2, "big")

        # Turn the request into an echo reply, then fix the ICMP checksum.
        reply[20] = 0
        reply[22:24] = b"\x00\x00"
        reply[22:24] = ip_checksum(reply[20:]).to_bytes(2, "big")

        with self._cond:
            if not self._closed and len(self._pending) < self._queue_len:
                self._pending.append(bytes(reply))
                self._cond.notify()
                return True
        self._log.debug("tun_disabled: dropped ICMP Echo Reply response")
        return True

    def close(self) -> None:
        """Stop accepting replies; readers get b"" once the queue is drained."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()