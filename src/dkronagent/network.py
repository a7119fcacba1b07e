"""Address and interface helpers used to bootstrap cluster networking.

``resolve_addr_parts`` turns a configured ``host[:port]`` string into the
numeric IP and port the membership layer binds to, inserting
:data:`DEFAULT_BIND_PORT` when the port is omitted. ``find_interface`` maps a
configured interface name to a :class:`NetworkInterface` descriptor using
``psutil``'s interface enumeration.
"""
from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass

import psutil

LOGGER = logging.getLogger(__name__)

DEFAULT_BIND_PORT = 8946
WILDCARD_HOST = "0.0.0.0"

MISSING_PORT = "missing port in address"
TOO_MANY_COLONS = "too many colons in address"

# One rewrite: append the default port, then parse again.
_MAX_PORT_CORRECTIONS = 1


class AddressError(ValueError):
    """Raised when an address is malformed or cannot be resolved."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"address {address!r}: {reason}")
        self.address = address
        self.reason = reason


class InterfaceNotFoundError(LookupError):
    """Raised when a named network interface does not exist on this host."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown network interface '{name}'.")
        self.name = name


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    """Local network interface descriptor."""

    name: str
    index: int
    mtu: int
    is_up: bool
    hardware_address: str | None
    addresses: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "index": self.index,
            "mtu": self.mtu,
            "is_up": self.is_up,
            "hardware_address": self.hardware_address,
            "addresses": list(self.addresses),
        }


def split_host_port(hostport: str) -> tuple[str, str]:
    """Split ``host:port`` (or ``[host]:port``) into its two components.

    The rules mirror Go's ``net.SplitHostPort``: IPv6 hosts must be bracketed
    and a missing port is reported with :data:`MISSING_PORT` so callers can
    tell it apart from other malformed input.
    """
    colon = hostport.rfind(":")
    if colon < 0:
        raise AddressError(hostport, MISSING_PORT)

    host_start, host_end = 0, 0
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise AddressError(hostport, "missing ']' in address")
        if end + 1 == len(hostport):
            raise AddressError(hostport, MISSING_PORT)
        if end + 1 != colon:
            if hostport[end + 1] == ":":
                raise AddressError(hostport, TOO_MANY_COLONS)
            raise AddressError(hostport, MISSING_PORT)
        host = hostport[1:end]
        host_start, host_end = 1, end + 1
    else:
        host = hostport[:colon]
        if ":" in host:
            raise AddressError(hostport, TOO_MANY_COLONS)

    if "[" in hostport[host_start:]:
        raise AddressError(hostport, "unexpected '[' in address")
    if "]" in hostport[host_end:]:
        raise AddressError(hostport, "unexpected ']' in address")
    return host, hostport[colon + 1 :]


def resolve_addr_parts(address: str, *, default_port: int = DEFAULT_BIND_PORT) -> tuple[str, int]:
    """Return the resolved ``(ip, port)`` pair for *address*.

    When *address* has no port, ``:<default_port>`` is appended and the split
    is attempted once more. Every other failure raises :class:`AddressError`.
    """
    candidate = address
    for attempt in range(_MAX_PORT_CORRECTIONS + 1):
        try:
            host, port_text = split_host_port(candidate)
            break
        except AddressError as exc:
            if exc.reason != MISSING_PORT or attempt == _MAX_PORT_CORRECTIONS:
                raise
            candidate = f"{candidate}:{default_port}"
            LOGGER.debug("No port in %r, retrying as %r", address, candidate)

    port = _parse_port(port_text, candidate)
    return _resolve_host(host, candidate), port


def find_interface(name: str) -> NetworkInterface | None:
    """Return the interface called *name*, or ``None`` when *name* is blank."""
    if not name:
        return None

    addresses = psutil.net_if_addrs()
    stats = psutil.net_if_stats()
    entries = addresses.get(name)
    stat = stats.get(name)
    if entries is None and stat is None:
        raise InterfaceNotFoundError(name)

    hardware: str | None = None
    ips: list[str] = []
    for entry in entries or []:
        if entry.family == psutil.AF_LINK:
            hardware = entry.address
        elif entry.family in (socket.AF_INET, socket.AF_INET6):
            ips.append(entry.address.split("%", 1)[0])

    return NetworkInterface(
        name=name,
        index=_interface_index(name),
        mtu=stat.mtu if stat is not None else 0,
        is_up=bool(stat.isup) if stat is not None else False,
        hardware_address=hardware,
        addresses=tuple(ips),
    )


def _parse_port(port_text: str, address: str) -> int:
    if not port_text:
        return 0
    if port_text.isascii() and port_text.isdigit():
        port = int(port_text)
        if port > 65535:
            raise AddressError(address, "invalid port")
        return port
    try:
        return socket.getservbyname(port_text, "tcp")
    except (OSError, ValueError) as exc:
        raise AddressError(address, f"unknown port {port_text!r}") from exc


def _resolve_host(host: str, address: str) -> str:
    if not host:
        return WILDCARD_HOST

    literal = host.split("%", 1)[0]
    try:
        return _format_ip(ipaddress.ip_address(literal))
    except ValueError:
        pass

    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, ValueError) as exc:
        raise AddressError(address, f"cannot resolve host {host!r}: {exc}") from exc

    ipv4 = [info for info in infos if info[0] == socket.AF_INET]
    chosen = (ipv4 or infos)[:1]
    if not chosen:
        raise AddressError(address, f"no addresses found for host {host!r}")
    return _format_ip(ipaddress.ip_address(str(chosen[0][4][0]).split("%", 1)[0]))


def _format_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str:
    # IPv4-mapped IPv6 addresses print in dotted form.
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def _interface_index(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except (OSError, AttributeError):
        return 0


__all__ = [
    "DEFAULT_BIND_PORT",
    "AddressError",
    "InterfaceNotFoundError",
    "NetworkInterface",
    "find_interface",
    "resolve_addr_parts",
    "split_host_port",
]
