"""
Messages the engine puts on an optional asyncio.Queue.

A presentation layer drains the queue; the engine never calls back into it.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from lanprobe.core.models import DnsBenchmarkResult, HostResult, SessionState, TraceHop


@dataclass
class SubnetStarted:
    cidr: str
    index: int
    count: int


@dataclass
class ScanProgress:
    completed: int
    total: int
    overall_completed: int
    overall_total: int

    @property
    def percent(self) -> float:
        if self.overall_total <= 0:
            return 100.0
        return self.overall_completed * 100 / self.overall_total


@dataclass
class HostScanned:
    result: HostResult


@dataclass
class HostPortsScanned:
    result: HostResult


@dataclass
class ScanFinished:
    results: List[HostResult] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0


@dataclass
class DnsResultUpdated:
    result: DnsBenchmarkResult


@dataclass
class HopUpdated:
    destination: str
    hop: TraceHop


@dataclass
class SessionStateChanged:
    destination: str
    state: SessionState
    reason: Optional[str] = None


def emit(queue, message) -> None:
    """Put ``message`` on ``queue`` if there is one. Queues are unbounded."""
    if queue is not None:
        queue.put_nowait(message)
