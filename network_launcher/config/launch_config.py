"""
Resolved launch configuration.

Built once by the argument resolver and never mutated afterwards.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class SubnetKind(Enum):
    """Subnet kinds that can be requested with --subnet."""
    APPLICATION = "application"
    SYSTEM = "system"
    VERIFIED_APPLICATION = "verified-application"
    BITCOIN = "bitcoin"
    FIDUCIARY = "fiduciary"
    NNS = "nns"
    SNS = "sns"

    @classmethod
    def choices(cls) -> Tuple[str, ...]:
        return tuple(kind.value for kind in cls)


@dataclass(frozen=True)
class SocketAddress:
    """An IP:port pair as accepted by --bitcoind-addr / --dogecoind-addr."""
    ip: IPAddress
    port: int

    @classmethod
    def parse(cls, text: str) -> "SocketAddress":
        """Parse ``1.2.3.4:8333`` or ``[::1]:8333``."""
        host, sep, port_text = text.rpartition(":")
        if not sep or not host:
            raise ValueError(f"invalid socket address syntax: {text!r}")
        if host.startswith("["):
            if not host.endswith("]"):
                raise ValueError(f"invalid socket address syntax: {text!r}")
            ip = ipaddress.IPv6Address(host[1:-1])
        else:
            ip = ipaddress.IPv4Address(host)
        port = parse_port(port_text)
        return cls(ip=ip, port=port)

    def __str__(self) -> str:
        if isinstance(self.ip, ipaddress.IPv6Address):
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


def parse_port(text: str) -> int:
    """Parse an unsigned 16-bit port number."""
    value = text.strip()
    if value.startswith("+"):
        value = value[1:]
    if not value.isdigit() or not value.isascii():
        raise ValueError(f"invalid port: {text!r}")
    port = int(value)
    if port > 0xFFFF:
        raise ValueError(f"port out of range: {text!r}")
    return port


@dataclass(frozen=True)
class LaunchConfiguration:
    """Fully resolved launcher options."""
    gateway_port: Optional[int] = None
    config_port: Optional[int] = None
    bind: Optional[IPAddress] = None
    state_dir: Optional[Path] = None
    artificial_delay_ms: Optional[int] = None
    subnets: Tuple[SubnetKind, ...] = ()
    bitcoind_addrs: Tuple[SocketAddress, ...] = ()
    dogecoind_addrs: Tuple[SocketAddress, ...] = ()
    ii: bool = False
    nns: bool = False
    pocketic_server_path: Optional[Path] = None
    stdout_file: Optional[Path] = None
    stderr_file: Optional[Path] = None
    status_dir: Optional[Path] = None
    verbose: bool = False
    interface_version: Optional[str] = None
