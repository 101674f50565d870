"""
TCP connect port scanning in COMMON, CUSTOM and ALL modes.
"""

import asyncio
import logging
from typing import Callable, Iterable, Iterator, List, Optional, Union

from lanprobe.core.cancel import CancelToken
from lanprobe.core.decorators import job_tracker
from lanprobe.core.models.enums import PortScanMode
from lanprobe.core.port_manager import MAX_PORT, MIN_PORT, PortManager, format_port
from lanprobe.core.scan_config import PortScanConfig, PortScanRequest

log = logging.getLogger('PortScan')


def port_batches(batch_size: int = 500, first: int = MIN_PORT,
                 last: int = MAX_PORT) -> Iterator[range]:
    """Consecutive, non-overlapping ranges covering ``first..last`` inclusive."""
    if batch_size < 1:
        raise ValueError('batch_size must be positive')
    start = first
    while start <= last:
        count = min(batch_size, last + 1 - start)
        yield range(start, start + count)
        start += batch_size


async def is_port_open(ip: str, port: int, timeout: float) -> bool:
    """True iff a TCP connect completes within ``timeout``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout=timeout)
    except (asyncio.TimeoutError, OSError):
        return False
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=0.5)
    except (asyncio.TimeoutError, OSError):
        pass
    return True


class PortScanner:
    """
    Runs port probes for one host at a time.

    COMMON and CUSTOM probe their whole list concurrently. ALL walks
    1-65535 in sequential batches; a batch must finish before the next one
    starts, which bounds open sockets to ``batch_size``.
    """

    def __init__(self, config: Optional[PortScanConfig] = None):
        self.cfg = config or PortScanConfig()
        self.port_manager = PortManager()
        self.job_stats = {'running': {}, 'finished': {}, 'peak': {}}

    async def scan_ports(self, ip: str,
                         request: Union[PortScanRequest, PortScanMode, None] = None,
                         cancel: Optional[CancelToken] = None,
                         on_batch: Optional[Callable[[int, int], None]] = None) -> List[str]:
        """
        Open ports of ``ip`` as display strings ("443 (HTTPS)"), ascending.

        A CUSTOM request without usable ports raises PortListError before any
        connection is attempted.
        """
        if request is None:
            request = PortScanRequest()
        elif isinstance(request, PortScanMode):
            request = PortScanRequest(mode=request)
        request.validate()
        cancel = cancel or CancelToken()

        if request.mode == PortScanMode.ALL:
            open_ports = await self.scan_all(ip, cancel, on_batch=on_batch)
        else:
            ports = self.port_manager.get_port_list(request.mode, request.custom_ports)
            open_ports = await self._probe_many(ip, ports, self.cfg.timeout_for(request.mode), cancel)

        log.debug(f'{ip}: {len(open_ports)} open ports ({request})')
        return [format_port(p) for p in open_ports]

    async def scan_all(self, ip: str, cancel: CancelToken,
                       on_batch: Optional[Callable[[int, int], None]] = None) -> List[int]:
        timeout = self.cfg.timeout_for(PortScanMode.ALL)
        open_ports: List[int] = []
        for batch in port_batches(self.cfg.batch_size):
            cancel.raise_if_cancelled()
            open_ports.extend(await self._probe_many(ip, batch, timeout, cancel))
            if on_batch:
                on_batch(batch[-1], MAX_PORT)
        return open_ports

    async def _probe_many(self, ip: str, ports: Iterable[int], timeout: float,
                          cancel: CancelToken) -> List[int]:
        ports = list(ports)
        cancel.raise_if_cancelled()
        results = await cancel.run(
            asyncio.gather(*(self.test_port(ip, port, timeout) for port in ports))
        )
        return sorted(port for port, is_open in zip(ports, results) if is_open)

    @job_tracker
    async def test_port(self, ip: str, port: int, timeout: float) -> bool:
        return await is_port_open(ip, port, timeout)
