"""
Tests for the result models: HostResult, SubnetList and DnsBenchmarkResult.
"""

import unittest

import pytest

from lanprobe.core.errors import SubnetTooLargeError, SubnetValidationError
from lanprobe.core.fingerprint import classify_os
from lanprobe.core.models import (
    NOT_AVAILABLE,
    DeviceErrorInfo,
    DnsBenchmarkResult,
    HostResult,
    SubnetEntry,
    SubnetList,
    TraceHop,
)


class HostResultTestCase(unittest.TestCase):
    """HostResult defaults, display helpers and rescans."""

    def test_defaults(self):
        result = HostResult(ip='10.0.0.1')
        self.assertFalse(result.alive)
        self.assertIsNone(result.rtt_ms)
        self.assertEqual(result.ttl, 0)
        self.assertEqual(result.hostname, NOT_AVAILABLE)
        self.assertEqual(result.mac, NOT_AVAILABLE)
        self.assertEqual(result.vendor, '')
        self.assertEqual(result.open_ports, [])
        self.assertEqual(result.status, 'Offline')
        self.assertEqual(result.ping_display, '-')
        self.assertFalse(result.has_mac)

    def test_unreachable_never_has_rtt(self):
        result = HostResult(ip='10.0.0.1', alive=False, rtt_ms=4.0)
        self.assertIsNone(result.rtt_ms)

        result.set_reachability(True, 3.6, 64)
        self.assertEqual(result.ping_display, '4 ms')
        result.set_reachability(False, 3.6, 64)
        self.assertIsNone(result.rtt_ms)
        self.assertEqual(result.ttl, 0)

    def test_sort_key_and_os(self):
        result = HostResult(ip='10.0.0.2', alive=True, ttl=128)
        self.assertEqual(result.sort_key, (10 << 24) | 2)
        self.assertEqual(result.os_type, 'Windows')
        dumped = result.model_dump()
        self.assertIn('sort_key', dumped)
        self.assertIn('os_type', dumped)

    def test_port_display(self):
        result = HostResult(ip='10.0.0.2', alive=True)
        self.assertEqual(result.port_summary, '')
        self.assertFalse(result.show_no_ports_message)

        result.has_port_scan_run = True
        self.assertTrue(result.show_no_ports_message)

        result.open_ports = ['22 (SSH)', '80 (HTTP)']
        self.assertTrue(result.has_ports)
        self.assertFalse(result.show_no_ports_message)
        self.assertEqual(result.port_summary, '2 open')

    def test_update_from_copies_enrichment(self):
        existing = HostResult(ip='10.0.0.3', subnet='10.0.0.0/24')
        existing.open_ports = ['22 (SSH)']
        fresh = HostResult(ip='10.0.0.3', alive=True, rtt_ms=2.0, ttl=64,
                           hostname='nas', mac='B8:27:EB:00:00:01', vendor='Raspberry Pi')
        existing.update_from(fresh)

        self.assertEqual(existing.enrichment(), fresh.enrichment())
        self.assertEqual(existing.rtt_ms, 2.0)
        # port findings belong to the port scan, not the probe
        self.assertEqual(existing.open_ports, ['22 (SSH)'])
        self.assertEqual(existing.subnet, '10.0.0.0/24')

    def test_error_info_from_exception(self):
        info = DeviceErrorInfo.from_exception(OSError('boom'), 'resolve_mac')
        self.assertEqual(info.source, 'resolve_mac')
        self.assertIn('boom', info.message)


# OS heuristic
###############################

@pytest.mark.parametrize('ttl, vendor, hostname, expected', [
    (0, '', '', ''),
    (128, '', '', 'Windows'),
    (120, '', '', 'Windows'),
    (64, '', '', 'Linux'),
    (50, '', '', 'Linux'),
    (64, 'Apple', '', 'Apple'),
    (128, '', 'Johns-iPhone', 'Apple'),
    (64, '', 'MacBook-Pro.local', 'Apple'),
    (255, 'Microsoft', '', 'Windows'),
    (255, 'Google', '', 'Linux'),
    (255, 'Cisco', '', ''),
    (20, '', '', ''),
])
def test_classify_os(ttl, vendor, hostname, expected):
    assert classify_os(ttl, vendor, hostname) == expected


# Subnet list
###############################

def test_subnet_list_rejects_duplicates():
    subnets = SubnetList()
    assert subnets.add('192.168.1.0/24', 'eth0') is not None
    assert subnets.add('192.168.1.0/24') is None
    assert subnets.add(' 192.168.1.0/24 ') is None
    assert len(subnets) == 1
    assert subnets.contains('192.168.1.0/24')


def test_subnet_list_validates():
    subnets = SubnetList()
    with pytest.raises(SubnetValidationError):
        subnets.add('not-a-subnet')
    with pytest.raises(SubnetTooLargeError):
        subnets.add('10.0.0.0/8')
    assert len(subnets) == 0


def test_subnet_list_include_and_remove():
    subnets = SubnetList()
    subnets.add('192.168.1.0/24')
    subnets.add('10.0.0.0/24', include=False)
    assert [e.cidr for e in subnets.included()] == ['192.168.1.0/24']
    assert subnets.remove('10.0.0.0/24')
    assert not subnets.remove('10.0.0.0/24')
    assert len(subnets) == 1


def test_subnet_entry_display():
    entry = SubnetEntry(cidr='10.0.0.0/30', label='Wi-Fi')
    assert entry.host_count == 2
    assert entry.display == '10.0.0.0/30 (Wi-Fi)'
    assert SubnetEntry(cidr='10.0.0.0/30').display == '10.0.0.0/30'


# DNS results
###############################

def test_dns_stats_ignore_failures():
    result = DnsBenchmarkResult(name='Test', address='192.0.2.53')
    for value in (12, -1, 30, 9, -1, 17):
        result.add_uncached(value)

    assert result.uncached_min == 9
    assert result.uncached_max == 30
    assert result.uncached_avg == pytest.approx(17)
    assert result.uncached_failures == 2
    assert result.iterations == 6


def test_dns_stats_empty():
    result = DnsBenchmarkResult(name='Test', address='192.0.2.53')
    assert result.cached_avg is None
    assert result.uncached_min is None
    result.add_cached(-5)
    assert result.cached_samples == [-1.0]
    assert result.cached_max is None


# Trace hops
###############################

def test_trace_hop_timeout_and_reply():
    hop = TraceHop(hop=3)
    hop.record_timeout()
    assert hop.address == '*'
    assert hop.hostname == 'Request timed out.'
    assert hop.latency_ms == -1
    assert hop.latency_display == '*'

    hop.record_reply('192.0.2.1', 7.4)
    assert not hop.timed_out
    assert hop.latency_display == '7 ms'
    assert hop.hostname == ''


def test_trace_hop_number_is_one_based():
    with pytest.raises(ValueError):
        TraceHop(hop=0)
