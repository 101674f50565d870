"""
Tests for SubnetScanner orchestration using a probe double: concurrency
bound, ordering, progress events, validation, cancellation, rescans and
the automatic port scan of online hosts.
"""

import asyncio
from typing import List

import pytest

from lanprobe.core.cancel import CancelToken
from lanprobe.core.errors import ScanCancelled, SubnetTooLargeError, SubnetValidationError
from lanprobe.core.events import (
    HostPortsScanned,
    HostScanned,
    ScanFinished,
    ScanProgress,
    SubnetStarted,
)
from lanprobe.core.ip_parser import ip_sort_key
from lanprobe.core.models import PortScanMode
from lanprobe.core.scan_config import PortScanRequest, ScanConfig
from lanprobe.core.subnet_scan import SubnetScanner
from ._helpers import FakeProbe, drain
from .test_globals import (
    MAX_CONCURRENCY,
    TEST_ONLINE_HOSTS,
    TEST_SUBNET,
    TEST_SUBNET_HOST_COUNT,
)


class FakePortScanner:
    def __init__(self, open_ports=('22 (SSH)',), error=None):
        self.open_ports = list(open_ports)
        self.error = error
        self.scanned: List[str] = []

    async def scan_ports(self, ip, request=None, cancel=None, on_batch=None):
        self.scanned.append(ip)
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return list(self.open_ports)


class CancellingProbe(FakeProbe):
    """Fires the token once ``after`` probes have returned."""

    def __init__(self, cancel: CancelToken, after: int, **kwargs):
        super().__init__(**kwargs)
        self.cancel_token = cancel
        self.after = after
        self.done = 0

    async def probe(self, ip, cancel=None, subnet=''):
        result = await super().probe(ip, cancel, subnet)
        self.done += 1
        if self.done == self.after:
            self.cancel_token.cancel()
        return result


def _scanner(probe, config=None, port_scanner=None):
    events = asyncio.Queue()
    scanner = SubnetScanner(config or ScanConfig(), events, probe=probe,
                            port_scanner=port_scanner or FakePortScanner())
    return scanner, events


def test_scan_small_subnet(fake_probe):
    async def run():
        scanner, events = _scanner(fake_probe)
        results = await scanner.scan_subnet(TEST_SUBNET)
        return scanner, results, drain(events)

    scanner, results, messages = asyncio.run(run())

    assert len(results) == TEST_SUBNET_HOST_COUNT
    assert [r.ip for r in results] == sorted((r.ip for r in results), key=ip_sort_key)
    assert {r.ip for r in results if r.alive} == set(TEST_ONLINE_HOSTS)
    assert all(r.subnet == TEST_SUBNET for r in results)
    assert not scanner.running
    assert f"finished={{'_scan_host': {TEST_SUBNET_HOST_COUNT}}}" in scanner.debug_active_scan()

    assert isinstance(messages[0], SubnetStarted)
    assert isinstance(messages[-1], ScanFinished)
    assert not messages[-1].cancelled
    progress = [m for m in messages if isinstance(m, ScanProgress)]
    assert [p.completed for p in progress] == list(range(1, TEST_SUBNET_HOST_COUNT + 1))
    assert progress[-1].percent == 100.0
    assert len([m for m in messages if isinstance(m, HostScanned)]) == TEST_SUBNET_HOST_COUNT


def test_concurrency_is_bounded():
    probe = FakeProbe(delay=0.01)

    async def run():
        scanner, _ = _scanner(probe)
        await scanner.scan_subnet('10.1.0.0/24')
        return scanner

    scanner = asyncio.run(run())
    assert len(probe.calls) == 254
    assert probe.peak == MAX_CONCURRENCY
    assert scanner.job_stats['peak']['_scan_host'] <= MAX_CONCURRENCY
    assert scanner.job_stats['finished']['_scan_host'] == 254


def test_custom_concurrency():
    probe = FakeProbe(delay=0.01)
    scanner, _ = _scanner(probe, ScanConfig(max_concurrency=5))
    asyncio.run(scanner.scan_subnet('10.1.0.0/27'))
    assert probe.peak <= 5


def test_multi_subnet_progress(fake_probe):
    async def run():
        scanner, events = _scanner(fake_probe)
        results = await scanner.scan_subnets(['10.0.0.0/29', '10.0.1.0/30'])
        return results, drain(events)

    results, messages = asyncio.run(run())
    assert len(results) == 8

    started = [m for m in messages if isinstance(m, SubnetStarted)]
    assert [(s.cidr, s.index, s.count) for s in started] == [('10.0.0.0/29', 0, 6), ('10.0.1.0/30', 1, 2)]

    progress = [m for m in messages if isinstance(m, ScanProgress)]
    assert [p.overall_completed for p in progress] == list(range(1, 9))
    assert {p.overall_total for p in progress} == {8}
    assert progress[-1].total == 2


@pytest.mark.parametrize('cidrs, error', [
    (['garbage'], SubnetValidationError),
    (['10.0.0.0/24', '10.0.0.1/32'], SubnetValidationError),
    (['10.0.0.0/8'], SubnetTooLargeError),
])
def test_validation_happens_before_probing(fake_probe, cidrs, error):
    scanner, events = _scanner(fake_probe)
    with pytest.raises(error):
        asyncio.run(scanner.scan_subnets(cidrs))
    assert fake_probe.calls == []
    assert events.empty()


def test_invalid_port_request_rejected_up_front(fake_probe):
    config = ScanConfig(scan_ports=True, port_request=PortScanRequest(PortScanMode.CUSTOM, 'none'))
    scanner, _ = _scanner(fake_probe, config)
    with pytest.raises(ValueError):
        asyncio.run(scanner.scan_subnet(TEST_SUBNET))
    assert fake_probe.calls == []


def test_cancellation_returns_partial_results():
    cancel = CancelToken()
    probe = CancellingProbe(cancel, after=10, online=['10.2.0.1'], delay=0.01)

    async def run():
        scanner, events = _scanner(probe)
        with pytest.raises(ScanCancelled) as exc_info:
            await scanner.scan_subnet('10.2.0.0/24', cancel)
        return exc_info.value, drain(events)

    error, messages = asyncio.run(run())
    partial = error.partial_results

    assert 10 <= len(partial) < 254
    assert [r.ip for r in partial] == sorted((r.ip for r in partial), key=ip_sort_key)
    assert len(probe.calls) < 254
    assert isinstance(messages[-1], ScanFinished)
    assert messages[-1].cancelled


def test_pre_cancelled_scan_probes_nothing(fake_probe):
    cancel = CancelToken()
    cancel.cancel()
    scanner, _ = _scanner(fake_probe)
    with pytest.raises(ScanCancelled):
        asyncio.run(scanner.scan_subnet(TEST_SUBNET, cancel))
    assert fake_probe.calls == []


def test_rescan_updates_in_place(fake_probe):
    async def run():
        scanner, events = _scanner(fake_probe)
        results = await scanner.scan_subnet(TEST_SUBNET)
        target = next(r for r in results if r.ip == '10.0.0.2')
        assert not target.alive

        fake_probe.online.add('10.0.0.2')
        drain(events)
        updated = await scanner.rescan_host(target)
        first = updated.enrichment()
        again = await scanner.rescan_host(target)
        return target, updated, again, first, drain(events)

    target, updated, again, first, messages = asyncio.run(run())
    assert updated is target and again is target
    assert target.alive
    assert target.hostname == 'host-2'
    assert not target.is_scanning
    assert again.enrichment() == first
    assert [type(m) for m in messages] == [HostScanned, HostScanned]


def test_online_hosts_are_port_scanned(fake_probe):
    ports = FakePortScanner(open_ports=['22 (SSH)', '80 (HTTP)'])
    config = ScanConfig(scan_ports=True)

    async def run():
        scanner, events = _scanner(fake_probe, config, ports)
        results = await scanner.scan_subnet(TEST_SUBNET)
        return results, drain(events)

    results, messages = asyncio.run(run())
    assert sorted(ports.scanned, key=ip_sort_key) == list(TEST_ONLINE_HOSTS)
    for r in results:
        if r.alive:
            assert r.open_ports == ['22 (SSH)', '80 (HTTP)']
            assert r.has_port_scan_run
            assert r.port_summary == '2 open'
        else:
            assert not r.has_port_scan_run
    assert len([m for m in messages if isinstance(m, HostPortsScanned)]) == len(TEST_ONLINE_HOSTS)
    # port scans finish before the scan reports completion
    assert isinstance(messages[-1], ScanFinished)


def test_port_scan_failure_is_recorded(fake_probe):
    ports = FakePortScanner(error=OSError('connect storm'))
    scanner, _ = _scanner(fake_probe, ScanConfig(scan_ports=True), ports)
    results = asyncio.run(scanner.scan_subnet(TEST_SUBNET))
    online = [r for r in results if r.alive]
    assert online
    for r in online:
        assert r.open_ports == []
        assert not r.is_port_scanning
        assert [e.source for e in r.errors] == ['scan_host_ports']
