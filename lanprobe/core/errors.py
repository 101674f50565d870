"""Exception types raised by the lanprobe engine."""

from typing import List, Optional


class LanprobeError(Exception):
    """Base class for all lanprobe errors."""


class SubnetValidationError(LanprobeError, ValueError):
    """Raised when a CIDR string cannot be parsed or has no usable hosts."""

    def __init__(self, cidr: str, reason: str = 'Invalid CIDR format'):
        self.cidr = cidr
        self.reason = reason
        super().__init__(f"{reason}: {cidr!r} (example: 192.168.1.0/24)")


class SubnetTooLargeError(SubnetValidationError):
    """Raised when a subnet exceeds the configured host limit."""

    def __init__(self, cidr: str, host_count: int, limit: int):
        self.host_count = host_count
        self.limit = limit
        super().__init__(
            cidr,
            f"Subnet range too large ({host_count:,} hosts). Maximum allowed is {limit:,}"
        )


class PortListError(LanprobeError, ValueError):
    """Raised when a custom port list contains no usable port numbers."""


class ScanCancelled(LanprobeError):
    """
    Cooperative cancellation of a scan, benchmark, or trace.

    Distinct from ordinary failure: callers catch this to stop issuing
    new work. Any results gathered before the cancellation are attached.
    """

    def __init__(self, message: str = 'Operation cancelled', partial_results: Optional[List] = None):
        super().__init__(message)
        self.partial_results = partial_results or []
