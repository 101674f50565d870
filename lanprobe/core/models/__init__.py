"""
Pydantic models for scan, benchmark and trace results.
"""

from lanprobe.core.models.enums import PortScanMode, SessionState
from lanprobe.core.models.host import (
    NOT_AVAILABLE,
    DeviceErrorInfo,
    HostResult,
    SubnetEntry,
    SubnetList,
)
from lanprobe.core.models.dns import DnsBenchmarkResult
from lanprobe.core.models.trace import (
    TIMEOUT_ADDRESS,
    TIMEOUT_HOSTNAME,
    LatencySample,
    TraceHop,
    TraceSession,
)

__all__ = [
    'PortScanMode',
    'SessionState',
    'NOT_AVAILABLE',
    'DeviceErrorInfo',
    'HostResult',
    'SubnetEntry',
    'SubnetList',
    'DnsBenchmarkResult',
    'TIMEOUT_ADDRESS',
    'TIMEOUT_HOSTNAME',
    'LatencySample',
    'TraceHop',
    'TraceSession',
]
