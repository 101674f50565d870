"""Helper objects for tests in the lanprobe project."""
import asyncio
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from lanprobe.core.cancel import CancelToken
from lanprobe.core.models import HostResult
from lanprobe.core.net_tools import PingReply


class FakeClock:
    """Callable clock for TraceSession that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class FakeProbe:
    """
    Stands in for HostProbe. Reports ``online`` addresses as reachable and
    records how many probes were in flight at once.
    """

    def __init__(self, online: Iterable[str] = (), delay: float = 0.005,
                 mac: str = 'B8:27:EB:00:00:01', vendor: str = 'Raspberry Pi'):
        self.online = set(online)
        self.delay = delay
        self.mac = mac
        self.vendor = vendor
        self.in_flight = 0
        self.peak = 0
        self.calls: List[str] = []

    async def probe(self, ip: str, cancel: Optional[CancelToken] = None,
                    subnet: str = '') -> HostResult:
        cancel = cancel or CancelToken()
        self.calls.append(ip)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await cancel.sleep(self.delay)
        finally:
            self.in_flight -= 1

        result = HostResult(ip=ip, subnet=subnet)
        if ip in self.online:
            result.set_reachability(True, 1.5, 64)
            result.hostname = f'host-{ip.split(".")[-1]}'
            result.mac = self.mac
            result.vendor = self.vendor
        return result


def ping_reply(rtt_ms: Optional[float] = 12.0, ttl: int = 64,
               responder: str = '192.0.2.1') -> PingReply:
    return PingReply(success=True, rtt_ms=rtt_ms, ttl=ttl, responder=responder)


def ttl_exceeded(responder: str, rtt_ms: float = 5.0) -> PingReply:
    return PingReply(success=False, rtt_ms=rtt_ms, responder=responder, ttl_expired=True)


def no_reply() -> PingReply:
    return PingReply(success=False)


def drain(queue: asyncio.Queue) -> list:
    """Everything currently on ``queue``, in order."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


async def start_local_server() -> Tuple[asyncio.AbstractServer, int]:
    """TCP listener on an ephemeral localhost port that closes every connection."""

    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]
    return server, port
