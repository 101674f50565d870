"""
Local network scanner and latency monitor
"""
# Scanner core functionality
from lanprobe.core.subnet_scan import SubnetScanner
from lanprobe.core.host_probe import HostProbe
from lanprobe.core.port_scan import PortScanner, port_batches
from lanprobe.core.dns_benchmark import DnsBenchmark, build_dns_query, default_servers
from lanprobe.core.traceroute import (
    TraceMonitor,
    TraceSessionRegistry,
    run_trace_once
)

# Configuration
from lanprobe.core.scan_config import (
    AppConfig,
    ScanConfig,
    PingConfig,
    NetBiosConfig,
    PortScanConfig,
    PortScanRequest,
    DnsBenchmarkConfig,
    TraceConfig
)

from lanprobe.core.port_manager import PortManager
from lanprobe.core.mac_lookup import VendorDatabase, get_vendor_database
from lanprobe.core.cancel import CancelToken
from lanprobe.core import net_tools, ip_parser, events

from lanprobe.core.errors import (
    LanprobeError,
    SubnetValidationError,
    SubnetTooLargeError,
    PortListError,
    ScanCancelled
)

# Models for structured data
from lanprobe.core.models import (
    PortScanMode,
    SessionState,
    DeviceErrorInfo,
    HostResult,
    SubnetEntry,
    SubnetList,
    DnsBenchmarkResult,
    LatencySample,
    TraceHop,
    TraceSession
)

__version__ = '1.0.0'
