"""
Launcher Settings
=================

Ambient tunables for the launcher. Everything user-facing is a CLI flag
(see ``network_launcher.cli``); the values here are environment-driven knobs
with defaults that match the PocketIC server's expectations.

Environment Variables:
----------------------
- NETWORK_LAUNCHER_SERVER_TTL_SECONDS: idle TTL passed to the server with --ttl
    (default: 2592000, i.e. 30 days). The launcher shuts the server down itself,
    so the server's own idle timeout must never fire first.
- NETWORK_LAUNCHER_PORT_FILE_NAME: name of the port file inside the watched
    temporary directory (default: pocketic.port)
- NETWORK_LAUNCHER_CONTROL_TIMEOUT: total timeout in seconds for a single
    control API request (default: 300.0). Instance creation with several subnets
    can take minutes.
- NETWORK_LAUNCHER_STATUS_FILE_NAME: status artifact name (default: status.json)
- POCKET_IC_BIN: server binary used when --pocketic-server-path is not given
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Environment Helpers
# =============================================================================

def _env_str(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        logger.warning(f"Invalid integer for {key}, using default {default}")
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        logger.warning(f"Invalid float for {key}, using default {default}")
        return default


def _env_optional_str(key: str) -> Optional[str]:
    value = os.getenv(key)
    return value if value else None


# =============================================================================
# Constants
# =============================================================================

# Grace period between interrupting the child and killing it
CHILD_EXIT_GRACE_SECONDS = 5.0

INTERFACE_VERSION_ENV = "ICP_CLI_NETWORK_LAUNCHER_INTERFACE_VERSION"
SERVER_BINARY_ENV = "POCKET_IC_BIN"
SERVER_BINARY_NAME = "pocket-ic"
STATUS_SCHEMA_VERSION = "1"


@dataclass
class LauncherSettings:
    """Environment-driven launcher settings."""

    server_ttl_seconds: int = field(
        default_factory=lambda: _env_int("NETWORK_LAUNCHER_SERVER_TTL_SECONDS", 2592000)
    )
    port_file_name: str = field(
        default_factory=lambda: _env_str("NETWORK_LAUNCHER_PORT_FILE_NAME", "pocketic.port")
    )
    control_timeout: float = field(
        default_factory=lambda: _env_float("NETWORK_LAUNCHER_CONTROL_TIMEOUT", 300.0)
    )
    status_file_name: str = field(
        default_factory=lambda: _env_str("NETWORK_LAUNCHER_STATUS_FILE_NAME", "status.json")
    )
    server_binary: Optional[str] = field(
        default_factory=lambda: _env_optional_str(SERVER_BINARY_ENV)
    )
