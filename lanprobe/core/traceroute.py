"""
Traceroute hop discovery and continuous latency monitoring.

A TraceMonitor runs two loops per destination: a fast latency sampler and a
slower hop discovery pass. Both share the monitor's CancelToken, so stopping
one destination never touches another.
"""

import asyncio
import logging
import threading
from datetime import timedelta
from typing import Dict, List, Optional, Set

from lanprobe.core.cancel import CancelToken
from lanprobe.core.errors import ScanCancelled
from lanprobe.core.events import HopUpdated, SessionStateChanged, emit
from lanprobe.core.models import SessionState, TraceHop, TraceSession
from lanprobe.core.net_tools import PingReply, ping, reverse_lookup
from lanprobe.core.scan_config import TraceConfig

log = logging.getLogger('Traceroute')

# hostname lookups for hops run detached from the hop loop
_pending_lookups: Set[asyncio.Task] = set()


async def run_trace_once(session: TraceSession,
                         cancel: Optional[CancelToken] = None,
                         config: Optional[TraceConfig] = None,
                         events: Optional[asyncio.Queue] = None) -> List[TraceHop]:
    """
    Walk TTL 1..max_hops once, updating ``session.hops`` in place.

    Stops early when the destination itself answers. Returns the hops
    touched by this pass.
    """
    cancel = cancel or CancelToken()
    cfg = config or TraceConfig()
    touched: List[TraceHop] = []

    for ttl in range(1, cfg.max_hops + 1):
        cancel.raise_if_cancelled()
        try:
            reply = await cancel.run(ping(
                session.destination, timeout=cfg.hop_timeout,
                ttl=ttl, payload_size=cfg.payload_size
            ))
        except ScanCancelled:
            raise
        except Exception as e:  # pylint: disable=broad-except
            log.debug(f'{session.destination}: probe with ttl {ttl} failed: {e!r}')
            reply = PingReply(success=False)
        hop = session.get_or_create_hop(ttl)
        touched.append(hop)

        if reply.answered and reply.responder:
            hop.record_reply(reply.responder, reply.rtt_ms if reply.rtt_ms is not None else -1)
            _start_hostname_lookup(session.destination, hop, reply.responder, cfg, events)
        else:
            hop.record_timeout()
        emit(events, HopUpdated(destination=session.destination, hop=hop))

        if reply.success:
            break

    log.debug(f'{session.destination}: trace pass covered {len(touched)} hops')
    return touched


def _start_hostname_lookup(destination: str, hop: TraceHop, address: str,
                           cfg: TraceConfig, events: Optional[asyncio.Queue]) -> None:
    task = asyncio.create_task(_resolve_hop_name(destination, hop, address, cfg, events))
    _pending_lookups.add(task)
    task.add_done_callback(_pending_lookups.discard)


async def _resolve_hop_name(destination: str, hop: TraceHop, address: str,
                            cfg: TraceConfig, events: Optional[asyncio.Queue]) -> None:
    name = await reverse_lookup(address, timeout=cfg.hop_timeout)
    # the slot may have been reused by a later pass
    if name and hop.address == address:
        hop.hostname = name
        emit(events, HopUpdated(destination=destination, hop=hop))


class TraceMonitor:
    """Owns the two loops of one TraceSession."""

    def __init__(self, session: TraceSession,
                 config: Optional[TraceConfig] = None,
                 events: Optional[asyncio.Queue] = None):
        self.session = session
        self.cfg = config or TraceConfig()
        self.events = events
        self.cancel = CancelToken()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self.session.is_active

    def start(self) -> None:
        """Start both loops on the running event loop. No-op if already running."""
        if self.session.is_active:
            return
        self.cancel = CancelToken()
        self.session.mark_started()
        self._tasks = [
            asyncio.create_task(self._sample_loop(self.cancel)),
            asyncio.create_task(self._hop_loop(self.cancel)),
        ]
        log.info(f'Monitoring {self.session.destination}')
        emit(self.events, SessionStateChanged(self.session.destination, SessionState.RUNNING))

    def stop(self, reason: Optional[str] = None) -> None:
        if not self.session.is_active:
            return
        self.cancel.cancel()
        self.session.mark_stopped()
        log.info(f'Stopped monitoring {self.session.destination}'
                 + (f': {reason}' if reason else ''))
        emit(self.events, SessionStateChanged(self.session.destination, SessionState.STOPPED, reason))

    async def wait(self) -> None:
        """Wait for both loops to unwind."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def sample_once(self, cancel: CancelToken) -> float:
        """
        One latency probe appended to the session history. Returns the value
        stored; a failed ping is stored as a timeout (-1).
        """
        try:
            reply = await cancel.run(ping(self.session.destination, timeout=self.cfg.sample_timeout))
        except ScanCancelled:
            raise
        except Exception as e:  # pylint: disable=broad-except
            log.debug(f'{self.session.destination}: latency sample failed: {e!r}')
            reply = None
        if reply is not None and reply.success and reply.rtt_ms is not None:
            latency = reply.rtt_ms
        else:
            latency = -1.0
        self.session.add_sample(latency)
        return latency

    async def _sample_loop(self, cancel: CancelToken) -> None:
        try:
            while not cancel.cancelled:
                if self.session.elapsed.total_seconds() >= self.cfg.max_duration:
                    self.stop('maximum monitoring duration reached')
                    break
                await self.sample_once(cancel)
                await cancel.sleep(self.cfg.sample_interval)
        except ScanCancelled:
            pass

    async def _hop_loop(self, cancel: CancelToken) -> None:
        try:
            while not cancel.cancelled:
                try:
                    await run_trace_once(self.session, cancel, self.cfg, self.events)
                except ScanCancelled:
                    raise
                except Exception as e:  # pylint: disable=broad-except
                    log.debug(f'{self.session.destination}: trace pass failed: {e!r}')
                await cancel.sleep(self.cfg.hop_interval)
        except ScanCancelled:
            pass


class TraceSessionRegistry:
    """
    Destination -> monitor map.

    Inserts and removals take a lock so the registry can be shared with
    another thread (a UI, for instance). Destinations are unique
    case-insensitively.
    """

    def __init__(self, config: Optional[TraceConfig] = None,
                 events: Optional[asyncio.Queue] = None):
        self.cfg = config or TraceConfig()
        self.events = events
        self._monitors: Dict[str, TraceMonitor] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(destination: str) -> str:
        return destination.strip().lower()

    def add(self, destination: str) -> Optional[TraceSession]:
        """New stopped session, or None when the destination is already tracked."""
        destination = destination.strip()
        if not destination:
            raise ValueError('Destination must not be empty')
        with self._lock:
            if self._key(destination) in self._monitors:
                return None
            session = TraceSession(
                destination=destination,
                window_minutes=self.cfg.window_minutes,
                retention=timedelta(seconds=self.cfg.retention),
            )
            self._monitors[self._key(destination)] = TraceMonitor(session, self.cfg, self.events)
        return session

    def remove(self, destination: str) -> bool:
        """Stop and forget a destination. False when it was not tracked."""
        with self._lock:
            monitor = self._monitors.pop(self._key(destination), None)
        if monitor is None:
            return False
        monitor.stop('removed')
        return True

    def monitor(self, destination: str) -> Optional[TraceMonitor]:
        with self._lock:
            return self._monitors.get(self._key(destination))

    def get(self, destination: str) -> Optional[TraceSession]:
        monitor = self.monitor(destination)
        return monitor.session if monitor else None

    def sessions(self) -> List[TraceSession]:
        with self._lock:
            return [m.session for m in self._monitors.values()]

    def __contains__(self, destination: str) -> bool:
        return self.monitor(destination) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._monitors)

    def start(self, destination: str) -> TraceSession:
        monitor = self._require(destination)
        monitor.start()
        return monitor.session

    def stop(self, destination: str) -> TraceSession:
        monitor = self._require(destination)
        monitor.stop()
        return monitor.session

    def start_all(self) -> None:
        for monitor in self._snapshot():
            monitor.start()

    def stop_all(self) -> None:
        for monitor in self._snapshot():
            monitor.stop()

    async def wait_all(self) -> None:
        await asyncio.gather(*(m.wait() for m in self._snapshot()))

    def _snapshot(self) -> List[TraceMonitor]:
        with self._lock:
            return list(self._monitors.values())

    def _require(self, destination: str) -> TraceMonitor:
        monitor = self.monitor(destination)
        if monitor is None:
            raise KeyError(f'Destination {destination!r} is not being tracked')
        return monitor
