"""
Command line entry point.

Parses the launcher flags, applies interface-version compatibility to unknown
arguments, runs the launcher and maps fatal errors to exit codes:

    0  graceful shutdown after SIGINT/SIGTERM
    1  fatal startup error (``Error: <cause>`` on stderr)
    2  malformed or unknown arguments (usage + message on stderr)

Usage:
    icp-network-launcher --interface-version 1.0.0 --status-dir /tmp/net
    icp-network-launcher --nns --subnet application --subnet bitcoin --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import os
import sys
from pathlib import Path
from typing import List, NoReturn, Optional, Sequence, Tuple

from network_launcher import INTERFACE_VERSION, __version__
from network_launcher.config.launch_config import (
    LaunchConfiguration,
    SocketAddress,
    SubnetKind,
    parse_port,
)
from network_launcher.config.settings import INTERFACE_VERSION_ENV
from network_launcher.core.version_compat import (
    ArgumentCompatibilityOutcome,
    ArgumentCompatibilityResolver,
    SemanticVersion,
)
from network_launcher.errors import ConfigurationError, LauncherError
from network_launcher.launcher import NetworkLauncher
from network_launcher.logging_config import setup_logging

logger = logging.getLogger(__name__)

PROG = "icp-cli-network-launcher"


class _LauncherArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting on bad input."""

    def error(self, message: str) -> NoReturn:
        raise ConfigurationError(message, usage=self.format_usage())


# =============================================================================
# Value converters
# =============================================================================

def _port(text: str) -> int:
    try:
        return parse_port(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}")
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative: {text!r}")
    return value


def _ip_address(text: str):
    try:
        return ipaddress.ip_address(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _socket_address(text: str) -> SocketAddress:
    try:
        return SocketAddress.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _semantic_version(text: str) -> SemanticVersion:
    try:
        return SemanticVersion.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


# =============================================================================
# Parser
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = _LauncherArgumentParser(
        prog=PROG,
        description="Launch a local PocketIC network and keep it running until interrupted.",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--interface-version",
        type=_semantic_version,
        default=os.environ.get(INTERFACE_VERSION_ENV) or None,
        help=(
            "Interface version the caller was built against. Unknown arguments are "
            f"tolerated for compatible versions (env: {INTERFACE_VERSION_ENV})"
        ),
    )
    parser.add_argument("--gateway-port", type=_port, help="HTTP gateway port")
    parser.add_argument("--config-port", type=_port, help="PocketIC server config port")
    parser.add_argument("--bind", type=_ip_address, help="Address to bind the server and gateway to")
    parser.add_argument("--state-dir", type=Path, help="Directory for persistent network state")
    parser.add_argument(
        "--artificial-delay-ms", type=_non_negative_int,
        help="Artificial delay for auto-progress, in milliseconds",
    )
    parser.add_argument(
        "--subnet", action="append", choices=SubnetKind.choices(), default=[],
        help="Subnet to create; repeatable (default: one application subnet)",
    )
    parser.add_argument(
        "--bitcoind-addr", action="append", type=_socket_address, default=[],
        help="bitcoind node address (IP:PORT); repeatable",
    )
    parser.add_argument(
        "--dogecoind-addr", action="append", type=_socket_address, default=[],
        help="dogecoind node address (IP:PORT); repeatable",
    )
    parser.add_argument("--ii", action="store_true", help="Install Internet Identity")
    parser.add_argument("--nns", action="store_true", help="Install the NNS and SNS (implies --ii)")
    parser.add_argument("--pocketic-server-path", type=Path, help="Path to the pocket-ic server binary")
    parser.add_argument("--stdout-file", type=Path, help="File to redirect server stdout to")
    parser.add_argument("--stderr-file", type=Path, help="File to redirect server stderr to")
    parser.add_argument(
        "--status-dir", type=Path,
        help="Directory to write status.json to once the network is ready "
             "(requires --interface-version)",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose launcher and server logs")
    return parser


def parse_arguments(
    args: Sequence[str],
) -> Tuple[LaunchConfiguration, List[str], Optional[SemanticVersion]]:
    """Parse known flags; unknown tokens are returned in their original order."""
    parser = build_parser()
    namespace, unknown = parser.parse_known_args(list(args))

    declared: Optional[SemanticVersion] = namespace.interface_version
    if namespace.status_dir is not None and declared is None:
        parser.error("the following arguments are required when --status-dir is used: --interface-version")

    config = LaunchConfiguration(
        gateway_port=namespace.gateway_port,
        config_port=namespace.config_port,
        bind=namespace.bind,
        state_dir=namespace.state_dir,
        artificial_delay_ms=namespace.artificial_delay_ms,
        subnets=tuple(SubnetKind(value) for value in namespace.subnet),
        bitcoind_addrs=tuple(namespace.bitcoind_addr),
        dogecoind_addrs=tuple(namespace.dogecoind_addr),
        ii=namespace.ii,
        nns=namespace.nns,
        pocketic_server_path=namespace.pocketic_server_path,
        stdout_file=namespace.stdout_file,
        stderr_file=namespace.stderr_file,
        status_dir=namespace.status_dir,
        verbose=namespace.verbose,
        interface_version=str(declared) if declared is not None else None,
    )
    return config, unknown, declared


def resolve_arguments(argv: Sequence[str]) -> ArgumentCompatibilityOutcome[LaunchConfiguration]:
    resolver = ArgumentCompatibilityResolver(parse_arguments, INTERFACE_VERSION)
    return resolver.resolve(argv)


# =============================================================================
# Main
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    setup_logging(verbose="--verbose" in argv)

    try:
        outcome = resolve_arguments(argv)
        config = outcome.config
        setup_logging(verbose=config.verbose)

        return asyncio.run(NetworkLauncher(config).run())
    except ConfigurationError as e:
        sys.stderr.write(e.usage or build_parser().format_usage())
        print(f"{PROG}: error: {e}", file=sys.stderr)
        return e.exit_code
    except LauncherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
