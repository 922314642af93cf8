"""
Launcher core: port discovery, child supervision, shutdown and status.
"""

from network_launcher.core.port_discovery import PortDiscoveryWatcher, parse_port_line
from network_launcher.core.principal import Principal
from network_launcher.core.process_supervisor import (
    ChildProcessHandle,
    ProcessSupervisor,
    resolve_server_binary,
)
from network_launcher.core.shutdown import (
    ShutdownCoordinator,
    ShutdownResult,
    ShutdownSignal,
    ShutdownState,
)
from network_launcher.core.status import StatusPublisher, StatusRecord
from network_launcher.core.stream_redirect import captured_stderr
from network_launcher.core.version_compat import (
    ArgumentCompatibilityOutcome,
    ArgumentCompatibilityResolver,
    CompatibilityMode,
    SemanticVersion,
    VersionRequirement,
)

__all__ = [
    "ArgumentCompatibilityOutcome",
    "ArgumentCompatibilityResolver",
    "ChildProcessHandle",
    "CompatibilityMode",
    "PortDiscoveryWatcher",
    "Principal",
    "ProcessSupervisor",
    "SemanticVersion",
    "ShutdownCoordinator",
    "ShutdownResult",
    "ShutdownSignal",
    "ShutdownState",
    "StatusPublisher",
    "StatusRecord",
    "VersionRequirement",
    "captured_stderr",
    "parse_port_line",
    "resolve_server_binary",
]
