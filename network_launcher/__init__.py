"""
ICP Network Launcher
====================

Starts a PocketIC server as a supervised child process, discovers the port it
picked, configures a network instance over the PocketIC control API, publishes
the connection facts to ``status.json`` and tears everything down in order when
asked to stop.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# Version info
__version__ = "0.1.0"
__author__ = "ICP Network Launcher Team"

# Interface version callers declare with --interface-version
INTERFACE_VERSION = "1.0.0"
