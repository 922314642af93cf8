"""
Pytest configuration and shared fixtures for the network launcher tests.

This file contains:
- Marker registration
- Logger isolation between tests
- A fake pocket-ic server executable (tests/fake_pocket_ic.py behind a shell
  wrapper) for end-to-end runs
"""

import logging
import os
import stat
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

FAKE_SERVER_SCRIPT = Path(__file__).parent / "fake_pocket_ic.py"


@pytest.fixture(scope="session")
def project_root_path():
    """Return the project root directory path."""
    return project_root


@pytest.fixture(autouse=True)
def reset_launcher_logger():
    """Undo setup_logging() so caplog and later tests see default propagation."""
    yield
    launcher_logger = logging.getLogger("network_launcher")
    for handler in list(launcher_logger.handlers):
        if getattr(handler, "_launcher_handler", False):
            launcher_logger.removeHandler(handler)
    launcher_logger.propagate = True
    launcher_logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_pocket_ic(tmp_path):
    """
    Path to an executable that behaves like a minimal pocket-ic server.

    POSIX only: the wrapper is a /bin/sh script exec'ing the current
    interpreter, so the pid the launcher sees is the server's pid.
    """
    if os.name != "posix":
        pytest.skip("fake pocket-ic wrapper requires a POSIX shell")

    wrapper = tmp_path / "bin" / "pocket-ic"
    wrapper.parent.mkdir()
    wrapper.write_text(
        "#!/bin/sh\n"
        f'exec "{sys.executable}" "{FAKE_SERVER_SCRIPT}" "$@"\n'
    )
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "e2e: mark test as an end-to-end test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "posix: mark test as requiring POSIX process groups and signals"
    )


def pytest_collection_modifyitems(config, items):
    """Skip POSIX-only tests elsewhere."""
    if os.name == "posix":
        return
    skip_posix = pytest.mark.skip(reason="requires POSIX process groups and signals")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


def pytest_report_header(config):
    """Add custom header to pytest report."""
    return [
        "ICP Network Launcher Test Suite",
        f"Project Root: {project_root}",
    ]
