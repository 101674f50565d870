"""
Subnet scanning: runs HostProbe over every usable address of one or more
subnets under a fixed concurrency gate and streams results as they land.
"""

import asyncio
import itertools
import logging
import uuid
from time import time
from typing import Iterable, List, Optional, Set

from lanprobe.core.cancel import CancelToken
from lanprobe.core.decorators import job_tracker
from lanprobe.core.errors import ScanCancelled
from lanprobe.core.events import (
    HostPortsScanned,
    HostScanned,
    ScanFinished,
    ScanProgress,
    SubnetStarted,
    emit,
)
from lanprobe.core.host_probe import HostProbe
from lanprobe.core.ip_parser import hosts_for_cidr, validate_subnet
from lanprobe.core.mac_lookup import VendorDatabase
from lanprobe.core.models import DeviceErrorInfo, HostResult
from lanprobe.core.port_scan import PortScanner
from lanprobe.core.scan_config import ScanConfig

log = logging.getLogger('SubnetScan')


class SubnetScanner:
    """
    Scans subnets host by host.

    Each address gets one probe task, but a task is only created once a
    permit is free, so at most ``max_concurrency`` probes (and tasks) exist
    at any moment regardless of subnet size. Results are collected in
    completion order and sorted by address once the subnet is done.
    """

    def __init__(
            self,
            config: Optional[ScanConfig] = None,
            events: Optional[asyncio.Queue] = None,
            vendors: Optional[VendorDatabase] = None,
            probe: Optional[HostProbe] = None,
            port_scanner: Optional[PortScanner] = None,
    ):
        self.cfg = config or ScanConfig()
        self.events = events
        self.probe = probe or HostProbe(self.cfg, vendors)
        self.port_scanner = port_scanner or PortScanner(self.cfg.port_config)
        self.uid = str(uuid.uuid4())
        self.running = False
        self.results: List[HostResult] = []
        self.job_stats = {'running': {}, 'finished': {}, 'peak': {}}
        self.start_time = 0.0
        self._port_tasks: Set[asyncio.Task] = set()

    async def scan_subnets(self, cidrs: Iterable[str],
                           cancel: Optional[CancelToken] = None) -> List[HostResult]:
        """
        Scan several subnets in order with one overall progress count.

        Every CIDR is validated before the first probe goes out. On
        cancellation ScanCancelled is raised carrying everything gathered.
        """
        cidrs = list(cidrs)
        counts = [validate_subnet(cidr, self.cfg.max_hosts) for cidr in cidrs]
        if self.cfg.scan_ports:
            self.cfg.port_request.validate()
        cancel = cancel or CancelToken()
        overall_total = sum(counts)

        self.running = True
        self.results = []
        self.start_time = time()
        log.info(f'Scan {self.uid} started: {len(cidrs)} subnet(s), {overall_total} hosts')

        offset = 0
        cancelled = False
        try:
            for index, (cidr, count) in enumerate(zip(cidrs, counts)):
                if cancel.cancelled:
                    cancelled = True
                    break
                emit(self.events, SubnetStarted(cidr=cidr, index=index, count=count))
                try:
                    found = await self._scan_one(cidr, count, cancel, offset, overall_total)
                except ScanCancelled as e:
                    self.results.extend(e.partial_results)
                    cancelled = True
                    break
                self.results.extend(found)
                offset += count

            await self._finish_port_scans()
        finally:
            self.running = False

        elapsed = time() - self.start_time
        cancelled = cancelled or cancel.cancelled
        emit(self.events, ScanFinished(results=list(self.results), cancelled=cancelled, elapsed=elapsed))
        online = sum(1 for r in self.results if r.alive)
        log.info(f'Scan {self.uid} {"cancelled" if cancelled else "finished"}: '
                 f'{online} online of {len(self.results)} in {elapsed:.1f}s')

        if cancelled:
            raise ScanCancelled(partial_results=list(self.results))
        return list(self.results)

    async def scan_subnet(self, cidr: str, cancel: Optional[CancelToken] = None) -> List[HostResult]:
        """Scan a single subnet. Raises SubnetValidationError before probing."""
        return await self.scan_subnets([cidr], cancel)

    async def _scan_one(self, cidr: str, count: int, cancel: CancelToken,
                        offset: int, overall_total: int) -> List[HostResult]:
        gate = asyncio.Semaphore(self.cfg.max_concurrency)
        results: List[HostResult] = []
        completed = itertools.count(1)
        in_flight: Set[asyncio.Task] = set()

        async def run_one(ip: str) -> None:
            try:
                result = await self._scan_host(ip, cancel, cidr)
                results.append(result)
                emit(self.events, HostScanned(result=result))
                if result.alive and self.cfg.scan_ports:
                    self._start_port_scan(result, cancel)
            except ScanCancelled:
                pass
            finally:
                gate.release()
                done = next(completed)
                emit(self.events, ScanProgress(
                    completed=done, total=count,
                    overall_completed=offset + done, overall_total=overall_total
                ))

        try:
            for ip in hosts_for_cidr(cidr):
                await cancel.run(gate.acquire())
                task = asyncio.create_task(run_one(ip))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        except ScanCancelled:
            pass
        finally:
            # in-flight probes observe the token themselves and unwind
            if in_flight:
                outcomes = await asyncio.gather(*in_flight, return_exceptions=True)
                for outcome in outcomes:
                    if isinstance(outcome, Exception):
                        log.error(f'Unexpected probe failure in {cidr}: {outcome!r}')

        results.sort(key=lambda r: r.sort_key)
        if cancel.cancelled:
            raise ScanCancelled(partial_results=results)
        return results

    @job_tracker
    async def _scan_host(self, ip: str, cancel: CancelToken, subnet: str) -> HostResult:
        return await self.probe.probe(ip, cancel, subnet=subnet)

    async def rescan_host(self, existing: HostResult,
                          cancel: Optional[CancelToken] = None) -> HostResult:
        """
        Probe one address again, outside the concurrency gate, and copy the
        fresh enrichment onto ``existing``.
        """
        existing.is_scanning = True
        try:
            fresh = await self.probe.probe(existing.ip, cancel, subnet=existing.subnet)
            existing.update_from(fresh)
        finally:
            existing.is_scanning = False
        emit(self.events, HostScanned(result=existing))
        return existing

    async def scan_host_ports(self, result: HostResult,
                              cancel: Optional[CancelToken] = None) -> HostResult:
        """Port scan one host with the configured request and store the findings."""
        if not result.alive:
            return result
        result.is_port_scanning = True
        try:
            result.open_ports = await self.port_scanner.scan_ports(
                result.ip, self.cfg.port_request, cancel
            )
            result.has_port_scan_run = True
        except ScanCancelled:
            raise
        except Exception as e:  # pylint: disable=broad-except
            log.debug(f'Port scan failed for {result.ip}: {e!r}')
            result.errors.append(DeviceErrorInfo.from_exception(e, 'scan_host_ports'))
        finally:
            result.is_port_scanning = False
        emit(self.events, HostPortsScanned(result=result))
        return result

    def _start_port_scan(self, result: HostResult, cancel: CancelToken) -> None:
        task = asyncio.create_task(self.scan_host_ports(result, cancel))
        self._port_tasks.add(task)
        task.add_done_callback(self._port_tasks.discard)

    async def _finish_port_scans(self) -> None:
        if self._port_tasks:
            await asyncio.gather(*list(self._port_tasks), return_exceptions=True)

    def debug_active_scan(self) -> str:
        """One-line summary of running/finished probe jobs."""
        return (f'{self.uid} running={self.job_stats["running"]} '
                f'finished={self.job_stats["finished"]} peak={self.job_stats["peak"]}')
