"""
Low-level network helpers: ping, ARP, reverse DNS, NetBIOS, UDP exchange and
local subnet discovery.

Every helper here turns transient network failures into ``None`` or a failed
reply object; none of them raise for an unreachable host.
"""

import asyncio
import ipaddress
import logging
import math
import os
import platform
import re
import socket
import struct
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import psutil

log = logging.getLogger('NetTools')

DEFAULT_SUBNET = '192.168.1.0/24'
NETBIOS_PORT = 137

# gethostbyaddr blocks, so lookups get their own pool sized for a full
# concurrency gate instead of queueing behind the default executor
_LOOKUP_POOL = ThreadPoolExecutor(max_workers=64, thread_name_prefix='lookup')


# Ping
###############################

@dataclass
class PingReply:
    """Outcome of one echo request."""
    success: bool
    rtt_ms: Optional[float] = None
    ttl: int = 0
    responder: Optional[str] = None
    ttl_expired: bool = False

    @property
    def answered(self) -> bool:
        """Destination reply or an intermediate router's TTL-exceeded."""
        return self.success or self.ttl_expired


_IPV4 = r'\d{1,3}(?:\.\d{1,3}){3}'
_TTL_EXCEEDED_RE = re.compile(
    rf'from\s+(?:\S+\s+\()?(?P<ip>{_IPV4})\)?[^\n]*?(?:time to live exceeded|ttl expired in transit)',
    re.IGNORECASE
)
_REPLY_RE = re.compile(rf'from\s+(?:\S+\s+\()?(?P<ip>{_IPV4})\)?[^\n]*?ttl[=:](?P<ttl>\d+)', re.IGNORECASE)
_TIME_RE = re.compile(r'time[=<]\s*(?P<ms>\d+(?:\.\d+)?)\s*ms', re.IGNORECASE)


def build_ping_command(ip: str, timeout: float, ttl: Optional[int] = None,
                       payload_size: Optional[int] = None,
                       system: Optional[str] = None) -> List[str]:
    """Single-echo ping command line for the host OS."""
    system = (system or platform.system()).lower()
    if system == 'windows':
        cmd = ['ping', '-n', '1', '-w', str(int(timeout * 1000))]
        if ttl is not None:
            cmd += ['-i', str(ttl)]
        if payload_size is not None:
            cmd += ['-l', str(payload_size)]
    elif system == 'darwin':
        cmd = ['ping', '-n', '-c', '1', '-W', str(int(timeout * 1000))]
        if ttl is not None:
            cmd += ['-m', str(ttl)]
        if payload_size is not None:
            cmd += ['-s', str(payload_size)]
    else:
        cmd = ['ping', '-n', '-c', '1', '-W', str(max(1, math.ceil(timeout)))]
        if ttl is not None:
            cmd += ['-t', str(ttl)]
        if payload_size is not None:
            cmd += ['-s', str(payload_size)]
    cmd.append(ip)
    return cmd


def parse_ping_output(output: str) -> PingReply:
    """
    Read the reply line of a single-echo ping.

    Success requires a reply line carrying a TTL; Windows prints
    "Reply from ...: Destination host unreachable" with exit code 0, so the
    exit code alone is not trusted.
    """
    for line in output.splitlines():
        exceeded = _TTL_EXCEEDED_RE.search(line)
        if exceeded:
            return PingReply(success=False, ttl_expired=True, responder=exceeded.group('ip'))
        reply = _REPLY_RE.search(line)
        if reply:
            rtt = _TIME_RE.search(line)
            return PingReply(
                success=True,
                rtt_ms=float(rtt.group('ms')) if rtt else None,
                ttl=int(reply.group('ttl')),
                responder=reply.group('ip'),
            )
    return PingReply(success=False)


def _ping_env() -> Optional[Dict[str, str]]:
    if os.name == 'nt':
        return None
    # force untranslated output so the regexes match
    env = dict(os.environ)
    env['LC_ALL'] = 'C'
    return env


async def ping(ip: str, timeout: float = 1.0, ttl: Optional[int] = None,
               payload_size: Optional[int] = None) -> PingReply:
    """
    Send one echo request using the system ping binary.

    Linux omits the time field for payloads under 8 bytes, so the round
    trip falls back to a stopwatch around the subprocess.
    """
    cmd = build_ping_command(ip, timeout, ttl=ttl, payload_size=payload_size)
    start = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=_ping_env(),
        )
    except (FileNotFoundError, PermissionError) as e:
        log.debug(f'Unable to run ping for {ip}: {e}')
        return PingReply(success=False)

    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout + 1.0)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        return PingReply(success=False)
    except asyncio.CancelledError:
        _kill(proc)
        raise

    elapsed_ms = (time.perf_counter() - start) * 1000
    reply = parse_ping_output(out.decode('utf-8', errors='ignore'))
    if reply.answered and reply.rtt_ms is None:
        reply.rtt_ms = round(elapsed_ms, 1)
    return reply


def _kill(proc) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


# ARP
###############################

_MAC_RE = re.compile(r'(?<![0-9A-Fa-f])[0-9A-Fa-f]{1,2}(?:[:-][0-9A-Fa-f]{1,2}){5}(?![0-9A-Fa-f])')
_EMPTY_MACS = {'00:00:00:00:00:00', 'FF:FF:FF:FF:FF:FF'}


def normalize_mac(mac: str) -> Optional[str]:
    """Uppercase colon form with zero-padded octets; None for empty/broadcast."""
    if not mac:
        return None
    parts = re.split(r'[:-]', mac.strip())
    if len(parts) != 6:
        return None
    try:
        octets = [int(p, 16) for p in parts]
    except ValueError:
        return None
    if any(o < 0 or o > 255 for o in octets):
        return None
    normalized = ':'.join(f'{o:02X}' for o in octets)
    if normalized in _EMPTY_MACS:
        return None
    return normalized


def read_proc_arp(path: str = '/proc/net/arp') -> Optional[Dict[str, str]]:
    """Kernel ARP cache as ip -> MAC. None when the table cannot be read."""
    table: Dict[str, str] = {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.readlines()[1:]
    except OSError:
        return None
    for line in lines:
        parts = line.split()
        # IP address, HW type, Flags, HW address, Mask, Device
        if len(parts) >= 4 and parts[2] != '0x0':
            mac = normalize_mac(parts[3])
            if mac:
                table[parts[0]] = mac
    return table


def parse_arp_output(output: str, ip: str) -> Optional[str]:
    """Find the MAC on the line of ``arp`` output that mentions ``ip``."""
    ip_re = re.compile(rf'(?<![\d.]){re.escape(ip)}(?![\d.])')
    for line in output.splitlines():
        if not ip_re.search(line):
            continue
        match = _MAC_RE.search(line)
        if match:
            mac = normalize_mac(match.group())
            if mac:
                return mac
    return None


def get_mac_address(ip: str) -> Optional[str]:
    """
    Look ``ip`` up in the local ARP cache. Blocking; never sends ARP itself.
    """
    table = read_proc_arp()
    if table is not None:
        # arp -n reads the same kernel table, so a miss here is final
        return table.get(ip)

    if platform.system().lower() == 'windows':
        arp_command = ['arp', '-a', ip]
    else:
        arp_command = ['arp', '-n', ip]
    try:
        output = subprocess.run(
            arp_command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            universal_newlines=True,
            timeout=2,
            env=_ping_env(),
            check=False,
        ).stdout
    except (OSError, subprocess.SubprocessError) as e:
        log.debug(f'ARP lookup failed for {ip}: {e}')
        return None
    return parse_arp_output(output or '', ip)


async def resolve_mac(ip: str) -> Optional[str]:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_LOOKUP_POOL, get_mac_address, ip)


# Reverse DNS
###############################

async def reverse_lookup(ip: str, timeout: float = 2.0) -> Optional[str]:
    """PTR name for ``ip``; None when missing, equal to the IP, or too slow."""
    loop = asyncio.get_running_loop()
    try:
        hostname, _, _ = await asyncio.wait_for(
            loop.run_in_executor(_LOOKUP_POOL, socket.gethostbyaddr, ip),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError):
        return None
    if not hostname or not hostname.strip() or hostname == ip:
        return None
    return hostname


# UDP request/response
###############################

class _UdpExchange(asyncio.DatagramProtocol):
    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.response = loop.create_future()

    def datagram_received(self, data, addr):
        if not self.response.done():
            self.response.set_result(data)

    def error_received(self, exc):
        if not self.response.done():
            self.response.set_exception(exc)

    def connection_lost(self, exc):
        if not self.response.done():
            self.response.set_exception(exc or ConnectionError('socket closed'))


async def udp_exchange(host: str, port: int, payload: bytes, timeout: float) -> Optional[bytes]:
    """Send one datagram and wait for the first reply, or None on timeout/error."""
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _UdpExchange(loop),
            remote_addr=(host, port),
            family=socket.AF_INET,
        )
    except OSError as e:
        log.debug(f'UDP socket to {host}:{port} failed: {e}')
        return None
    try:
        transport.sendto(payload)
        return await asyncio.wait_for(protocol.response, timeout=timeout)
    except (asyncio.TimeoutError, OSError):
        return None
    finally:
        transport.close()


# NetBIOS node status
###############################

def build_netbios_request(transaction_id: int = 0xA528) -> bytes:
    """
    50-byte NBSTAT query for the wildcard name "*".

    The name is first-level encoded: '*' (0x2A) becomes "CK" and each of the
    15 padding NULs becomes "AA".
    """
    header = struct.pack('>HHHHHH', transaction_id, 0x0000, 1, 0, 0, 0)
    name = b'\x20' + b'CK' + b'A' * 30 + b'\x00'
    question = struct.pack('>HH', 0x0021, 0x0001)
    return header + name + question


def _skip_name(data: bytes, offset: int) -> int:
    """Offset just past an encoded name or compression pointer."""
    if offset >= len(data):
        raise IndexError(offset)
    if data[offset] & 0xC0 == 0xC0:
        return offset + 2
    while offset < len(data):
        length = data[offset]
        offset += 1
        if length == 0:
            return offset
        offset += length
    raise IndexError(offset)


def parse_netbios_response(data: bytes) -> Optional[str]:
    """
    Extract the workstation name (suffix 0x00, unique) from an NBSTAT answer.

    Walks the header counts so both an echoed question section and a
    compressed or full answer name are handled. Entries are 18 bytes:
    15-byte name, 1-byte suffix, 2-byte flags (0x8000 = group).
    """
    if not data or len(data) < 12:
        return None
    try:
        qdcount, ancount = struct.unpack('>HH', data[4:8])
        if ancount == 0:
            return None
        offset = 12
        for _ in range(qdcount):
            offset = _skip_name(data, offset) + 4
        # answer: name, type, class, ttl, rdlength
        offset = _skip_name(data, offset) + 10
        if offset >= len(data):
            return None

        num_names = data[offset]
        entry = offset + 1
        for _ in range(num_names):
            if entry + 18 > len(data):
                break
            suffix = data[entry + 15]
            flags = (data[entry + 16] << 8) | data[entry + 17]
            if suffix == 0x00 and not flags & 0x8000:
                name = data[entry:entry + 15].decode('ascii', errors='ignore').rstrip(' \x00')
                if name.strip():
                    return name
            entry += 18
    except (IndexError, struct.error):
        return None
    return None


async def query_netbios_name(ip: str, timeout: float = 1.0) -> Optional[str]:
    response = await udp_exchange(ip, NETBIOS_PORT, build_netbios_request(), timeout)
    if response is None:
        return None
    return parse_netbios_response(response)


# Local interfaces
###############################

def _label(name: str) -> str:
    # long NIC names are shortened for display
    return name if len(name) <= 20 else name[:17] + '…'


def _is_loopback(name: str, stats) -> bool:
    flags = getattr(stats, 'flags', '') or ''
    lowered = name.lower()
    return 'loopback' in flags.split(',') or lowered in ('lo', 'lo0') or lowered.startswith('loopback')


def get_connected_subnets() -> List[Tuple[str, str]]:
    """
    (CIDR, label) for every IPv4 subnet on an active, non-loopback interface.

    Point-to-point and host routes (/31, /32) are skipped; duplicates are
    reported once under the first interface that has them.
    """
    seen = set()
    results: List[Tuple[str, str]] = []
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as e:
        log.warning(f'Unable to enumerate interfaces: {e}')
        return results

    for interface, snicaddrs in addrs.items():
        nic_stats = stats.get(interface)
        if nic_stats is None or not nic_stats.isup or _is_loopback(interface, nic_stats):
            continue
        for snicaddr in snicaddrs:
            if snicaddr.family != socket.AF_INET or not snicaddr.netmask:
                continue
            if snicaddr.address.startswith('127.'):
                continue
            try:
                network = ipaddress.IPv4Network(f'{snicaddr.address}/{snicaddr.netmask}', strict=False)
            except ValueError:
                continue
            if network.prefixlen >= 31:
                continue
            cidr = str(network)
            if cidr.lower() in seen:
                continue
            seen.add(cidr.lower())
            results.append((cidr, _label(interface)))
    return results


def _outbound_ip() -> Optional[str]:
    # no packet is sent; connect() on UDP only picks a route
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(('8.8.8.8', 80))
        return sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()


def get_active_subnet() -> str:
    """The subnet of the interface used for outbound traffic, or a default."""
    subnets = get_connected_subnets()
    if not subnets:
        return DEFAULT_SUBNET
    local_ip = _outbound_ip()
    if local_ip:
        address = ipaddress.IPv4Address(local_ip)
        for cidr, _ in subnets:
            if address in ipaddress.IPv4Network(cidr):
                return cidr
    return subnets[0][0]
