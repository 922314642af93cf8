"""
Configuration package for the network launcher.
===============================================

- launch_config: the immutable LaunchConfiguration built from CLI arguments
- settings: environment-driven tunables and fixed constants
"""

from network_launcher.config.launch_config import (
    LaunchConfiguration,
    SocketAddress,
    SubnetKind,
    parse_port,
)
from network_launcher.config.settings import (
    CHILD_EXIT_GRACE_SECONDS,
    LauncherSettings,
)

__all__ = [
    "LaunchConfiguration",
    "SocketAddress",
    "SubnetKind",
    "parse_port",
    "CHILD_EXIT_GRACE_SECONDS",
    "LauncherSettings",
]
