"""
Clients for external services the launcher drives.
"""

from network_launcher.clients.pocketic_client import (
    ConfiguredInstance,
    ControlChannelConfigurator,
    PocketIcClient,
)

__all__ = ["ConfiguredInstance", "ControlChannelConfigurator", "PocketIcClient"]
