"""
DNS resolver latency benchmark.

Each iteration takes two measurements: a timed OS-level lookup of a fixed
hostname (whatever caching the OS and its resolver apply) and a hand-built
UDP query for a random subdomain sent straight to the resolver, which no
cache can have answered before.
"""

import asyncio
import logging
import secrets
import socket
import struct
import time
import uuid
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from lanprobe.core.cancel import CancelToken
from lanprobe.core.errors import ScanCancelled
from lanprobe.core.events import DnsResultUpdated, emit
from lanprobe.core.models import DnsBenchmarkResult
from lanprobe.core.net_tools import udp_exchange
from lanprobe.core.scan_config import DnsBenchmarkConfig

log = logging.getLogger('DnsBenchmark')

COMMON_SERVERS: List[Tuple[str, str]] = [
    ('Google Public DNS', '8.8.8.8'),
    ('Cloudflare DNS', '1.1.1.1'),
    ('OpenDNS', '208.67.222.222'),
    ('Quad9', '9.9.9.9'),
]
LOCAL_SERVER: Tuple[str, str] = ('Local / System Default', '127.0.0.1')

QTYPE_A = 0x0001
QCLASS_IN = 0x0001
FLAGS_STANDARD_QUERY = 0x0100  # RD set


def default_servers() -> List[Tuple[str, str]]:
    return COMMON_SERVERS + [LOCAL_SERVER]


def encode_qname(domain: str) -> bytes:
    """Length-prefixed labels terminated by a zero byte."""
    out = bytearray()
    for label in domain.strip('.').split('.'):
        raw = label.encode('ascii')
        if not raw or len(raw) > 63:
            raise ValueError(f'Invalid DNS label {label!r} in {domain!r}')
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def build_dns_query(domain: str, transaction_id: Optional[int] = None) -> bytes:
    """
    Minimal A/IN query: 12-byte header (random id, flags 0x0100, one
    question, no other records) followed by the question.
    """
    if transaction_id is None:
        transaction_id = secrets.randbits(16)
    header = struct.pack('>HHHHHH', transaction_id, FLAGS_STANDARD_QUERY, 1, 0, 0, 0)
    return header + encode_qname(domain) + struct.pack('>HH', QTYPE_A, QCLASS_IN)


def random_subdomain(base_domain: str) -> str:
    return f'{uuid.uuid4().hex}.{base_domain}'


class DnsBenchmark:
    """Runs timed lookups against one or more resolvers."""

    def __init__(self, config: Optional[DnsBenchmarkConfig] = None,
                 events: Optional[asyncio.Queue] = None):
        self.cfg = config or DnsBenchmarkConfig()
        self.events = events

    async def measure_cached(self) -> float:
        """Milliseconds for an OS-level lookup, -1 on failure."""
        loop = asyncio.get_running_loop()
        start = time.perf_counter()
        try:
            await asyncio.wait_for(
                loop.getaddrinfo(self.cfg.cached_hostname, None, family=socket.AF_INET),
                timeout=self.cfg.query_timeout
            )
        except (asyncio.TimeoutError, OSError) as e:
            log.debug(f'Cached lookup of {self.cfg.cached_hostname} failed: {e!r}')
            return -1.0
        return (time.perf_counter() - start) * 1000

    async def measure_uncached(self, server: str) -> float:
        """Milliseconds for a raw UDP query to ``server``, -1 on timeout."""
        query = build_dns_query(random_subdomain(self.cfg.base_domain))
        start = time.perf_counter()
        response = await udp_exchange(server, self.cfg.port, query, self.cfg.query_timeout)
        elapsed = (time.perf_counter() - start) * 1000
        # any answer counts, NXDOMAIN included, as long as it is ours
        if not response or response[:2] != query[:2]:
            return -1.0
        return elapsed

    async def run_benchmark(self, address: str, name: str,
                            duration: Optional[float] = None,
                            cancel: Optional[CancelToken] = None) -> AsyncIterator[DnsBenchmarkResult]:
        """
        Yield the same, growing result object after every iteration until
        ``duration`` seconds have passed. Raises ScanCancelled when cancelled.
        """
        cancel = cancel or CancelToken()
        duration = self.cfg.duration if duration is None else duration
        result = DnsBenchmarkResult(name=name, address=address)
        deadline = time.monotonic() + duration
        log.info(f'Benchmarking {name} ({address}) for {duration}s')

        while time.monotonic() < deadline:
            cancel.raise_if_cancelled()
            result.add_cached(await cancel.run(self.measure_cached()))
            result.add_uncached(await cancel.run(self.measure_uncached(address)))

            emit(self.events, DnsResultUpdated(result=result))
            yield result
            await cancel.sleep(self.cfg.interval)

        log.info(f'{name}: uncached avg={result.uncached_avg} over {len(result.uncached_samples)} queries')

    async def benchmark_servers(self, servers: Optional[Sequence[Tuple[str, str]]] = None,
                                duration: Optional[float] = None,
                                cancel: Optional[CancelToken] = None) -> List[DnsBenchmarkResult]:
        """
        Benchmark every ``(name, address)`` pair concurrently and return the
        final results in input order.
        """
        cancel = cancel or CancelToken()
        servers = list(servers) if servers is not None else default_servers()

        async def drain(name: str, address: str) -> DnsBenchmarkResult:
            last = DnsBenchmarkResult(name=name, address=address)
            try:
                async for update in self.run_benchmark(address, name, duration, cancel):
                    last = update
            except ScanCancelled:
                pass
            return last

        results = list(await asyncio.gather(*(drain(name, addr) for name, addr in servers)))
        if cancel.cancelled:
            raise ScanCancelled(partial_results=results)
        return results
