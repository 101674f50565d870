"""
Enumerations shared by the result models and configuration.
"""

from enum import Enum


class PortScanMode(str, Enum):
    """Which ports a PortScanRequest covers."""
    COMMON = "common"
    ALL = "all"
    CUSTOM = "custom"


class SessionState(str, Enum):
    """Lifecycle of a monitored trace destination."""
    STOPPED = "stopped"
    RUNNING = "running"
