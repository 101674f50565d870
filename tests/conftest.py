"""
Shared pytest fixtures and configuration for the lanprobe test suite.
Provides common test utilities, mock objects, and test data.
"""

from unittest.mock import MagicMock

import pytest

from lanprobe.core.mac_lookup import VendorDatabase
from lanprobe.core.port_manager import PortManager
from lanprobe.core.scan_config import PingConfig, ScanConfig
from .test_globals import TEST_ONLINE_HOSTS, TEST_SUBNET
from ._helpers import FakeClock, FakeProbe


@pytest.fixture
def port_manager():
    """
    Create a PortManager instance.

    Returns:
        PortManager: Stateless port list resolver
    """
    return PortManager()


@pytest.fixture
def scan_config():
    """
    Create a ScanConfig with fast ping settings for testing.

    Returns:
        ScanConfig: Configuration instance
    """
    return ScanConfig(ping_config=PingConfig(attempts=2, timeout=0.1, retry_delay=0.0))


@pytest.fixture
def temp_subnet():
    """
    Provide a small test subnet that won't trigger size limits.

    Returns:
        str: CIDR notation for a small test subnet
    """
    return TEST_SUBNET


@pytest.fixture
def fake_probe():
    """Probe double that reports TEST_ONLINE_HOSTS as reachable."""
    return FakeProbe(online=TEST_ONLINE_HOSTS)


@pytest.fixture
def clock():
    """Manually advanced clock for TraceSession."""
    return FakeClock()


@pytest.fixture
def vendor_db(tmp_path):
    """
    VendorDatabase with its cache under tmp_path and a mocked HTTP session,
    so nothing touches the network or the home directory.
    """
    session = MagicMock()
    return VendorDatabase(cache_file=tmp_path / 'oui.csv', session=session)


@pytest.fixture
def sample_oui_csv():
    """A registry CSV large enough to be accepted as a real download."""
    lines = ['Registry,Assignment,Organization Name,Organization Address']
    lines.append('MA-L,B827EB,Raspberry Pi Foundation,Cambridge GB')
    lines.append('MA-L,F01898,Apple Inc.,Cupertino CA US')
    lines.append('MA-L,3C5282,"Hewlett Packard Enterprise, L.P.",Houston TX US')
    for i in range(150):
        lines.append(f'MA-L,AA{i:04X},Example Devices {i} Ltd,Nowhere')
    return '\n'.join(lines) + '\n'
