"""
Traceroute and latency-monitor models.

TraceSession doubles as the latency time series for one destination: it keeps
up to two hours of samples and exposes a time-windowed view that either
follows the clock (live) or is pinned to an earlier end time (panned).
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from lanprobe.core.models.enums import SessionState

TIMEOUT_ADDRESS = "*"
TIMEOUT_HOSTNAME = "Request timed out."
DEFAULT_RETENTION = timedelta(hours=2)
# pan requests closer than this to "now" return to live mode
LIVE_SNAP_SECONDS = 5


class TraceHop(BaseModel):
    """One TTL slot of a traceroute. Updated in place across repeated traces."""
    hop: int = Field(ge=1, description="1-based hop number (the TTL used)")
    address: str = Field(default="", description="Responder address or '*' on timeout")
    hostname: str = Field(default="", description="Reverse-DNS name of the responder")
    latency_ms: float = Field(default=-1, description="Reply latency, -1 on timeout")
    timed_out: bool = Field(default=False, description="No reply within the hop timeout")

    def record_reply(self, address: str, latency_ms: float) -> None:
        if address != self.address:
            self.hostname = ""
        self.address = address
        self.latency_ms = latency_ms
        self.timed_out = False

    def record_timeout(self) -> None:
        self.address = TIMEOUT_ADDRESS
        self.hostname = TIMEOUT_HOSTNAME
        self.latency_ms = -1
        self.timed_out = True

    @property
    def latency_display(self) -> str:
        if self.timed_out or self.latency_ms < 0:
            return "*"
        return f"{round(self.latency_ms)} ms"


class LatencySample(BaseModel):
    """A single (time, latency) point. Latency -1 marks a timeout."""
    timestamp: datetime
    latency_ms: float

    @property
    def is_timeout(self) -> bool:
        return self.latency_ms < 0


class TraceSession(BaseModel):
    """Monitoring state for a single destination."""
    destination: str = Field(description="Hostname or address being monitored")
    state: SessionState = Field(default=SessionState.STOPPED)
    start_time: Optional[datetime] = Field(default=None)
    window_minutes: int = Field(default=1, description="Chart window length")
    paused: bool = Field(default=False, description="Freeze the filtered view")
    retention: timedelta = Field(default=DEFAULT_RETENTION)
    history: List[LatencySample] = Field(default_factory=list)
    hops: List[TraceHop] = Field(default_factory=list)

    _clock: Callable[[], datetime] = PrivateAttr(default=datetime.now)
    _pinned_end: Optional[datetime] = PrivateAttr(default=None)
    _elapsed: timedelta = PrivateAttr(default=timedelta(0))
    _filtered: List[LatencySample] = PrivateAttr(default_factory=list)

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, **data):
        super().__init__(**data)
        if clock is not None:
            self._clock = clock
        self.refresh()

    @field_validator('window_minutes')
    @classmethod
    def _positive_window(cls, value: int) -> int:
        if value < 1:
            raise ValueError("window_minutes must be at least 1")
        return value

    def now(self) -> datetime:
        return self._clock()

    # lifecycle

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.RUNNING

    @property
    def status(self) -> str:
        return "Running" if self.is_active else "Stopped"

    def mark_started(self) -> None:
        self.state = SessionState.RUNNING
        self.start_time = self.now()
        self._elapsed = timedelta(0)
        self.set_paused(False)

    def mark_stopped(self) -> None:
        self._elapsed = self.elapsed
        self.state = SessionState.STOPPED

    @property
    def elapsed(self) -> timedelta:
        if self.is_active and self.start_time is not None:
            return self.now() - self.start_time
        return self._elapsed

    @property
    def elapsed_display(self) -> str:
        total = int(self.elapsed.total_seconds())
        hours, rem = divmod(total, 3600)
        minutes, seconds = divmod(rem, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    # hops

    def get_or_create_hop(self, number: int) -> TraceHop:
        """Return the slot for TTL ``number``, appending slots up to it as needed."""
        while len(self.hops) < number:
            self.hops.append(TraceHop(hop=len(self.hops) + 1))
        return self.hops[number - 1]

    # time series

    def add_sample(self, latency_ms: float, timestamp: Optional[datetime] = None) -> LatencySample:
        """Append a sample, prune past the retention horizon and refresh the view."""
        sample = LatencySample(
            timestamp=timestamp or self.now(),
            latency_ms=latency_ms if latency_ms >= 0 else -1.0
        )
        self.history.append(sample)

        cutoff = self.now() - self.retention
        if self.history and self.history[0].timestamp < cutoff:
            self.history = [p for p in self.history if p.timestamp >= cutoff]

        self.refresh()
        return sample

    @property
    def is_live(self) -> bool:
        return self._pinned_end is None

    @property
    def view_end(self) -> datetime:
        return self._pinned_end if self._pinned_end is not None else self.now()

    @property
    def view_start(self) -> datetime:
        return self.view_end - timedelta(minutes=self.window_minutes)

    def set_window_minutes(self, minutes: int) -> None:
        if minutes < 1:
            raise ValueError("window_minutes must be at least 1")
        self.window_minutes = minutes
        self.refresh()

    def set_paused(self, paused: bool) -> None:
        self.paused = paused
        if not paused:
            self.refresh()

    def pan_to(self, view_end: datetime) -> None:
        """
        Anchor the view to ``view_end``.

        Requests within LIVE_SNAP_SECONDS of now return to live mode. Otherwise
        the end is clamped so the window never starts before the oldest sample
        and never ends in the future.
        """
        now = self.now()
        if (now - view_end).total_seconds() < LIVE_SNAP_SECONDS:
            self.reset_to_live()
            return

        if self.history:
            oldest_allowed = self.history[0].timestamp + timedelta(minutes=self.window_minutes)
            if view_end < oldest_allowed:
                view_end = oldest_allowed

        if view_end > now:
            view_end = now

        self._pinned_end = view_end
        self.refresh()

    def reset_to_live(self) -> None:
        self._pinned_end = None
        self.refresh()

    def refresh(self) -> None:
        """Recompute the filtered slice. No-op while paused."""
        if self.paused:
            return
        start, end = self.view_start, self.view_end
        self._filtered = [p for p in self.history if start <= p.timestamp <= end]

    def _view(self) -> List[LatencySample]:
        # a live, unpaused view follows the clock even when no samples arrive
        if self.is_live and not self.paused:
            self.refresh()
        return self._filtered

    @property
    def filtered_history(self) -> List[LatencySample]:
        return list(self._view())

    @property
    def max_latency(self) -> float:
        view = self._view()
        if not view:
            return 100.0
        return max(100.0, max(p.latency_ms for p in view))

    @property
    def average_latency(self) -> float:
        answered = [p.latency_ms for p in self._view() if p.latency_ms >= 0]
        if not answered:
            return 0.0
        return sum(answered) / len(answered)

    @property
    def packet_loss(self) -> float:
        view = self._view()
        if not view:
            return 0.0
        timeouts = sum(1 for p in view if p.is_timeout)
        return timeouts / len(view) * 100

    # axis labels are anchored to the view window, not to sample timestamps

    @property
    def time_format(self) -> str:
        return "%H:%M:%S" if self.window_minutes <= 10 else "%H:%M"

    @property
    def x_axis_start_label(self) -> str:
        return self.view_start.strftime(self.time_format)

    @property
    def x_axis_mid_label(self) -> str:
        mid = self.view_start + timedelta(minutes=self.window_minutes / 2.0)
        return mid.strftime(self.time_format)

    @property
    def x_axis_end_label(self) -> str:
        return self.view_end.strftime(self.time_format)
