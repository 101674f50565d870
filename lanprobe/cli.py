"""
Command line front end. Drives the engine and renders its events and
results as log lines and tables.
"""

import asyncio
import logging
import signal
import traceback
from typing import Callable, List, Optional, Tuple

from tabulate import tabulate

from lanprobe.core.cancel import CancelToken
from lanprobe.core.dns_benchmark import DnsBenchmark, default_servers
from lanprobe.core.errors import LanprobeError, ScanCancelled, SubnetValidationError
from lanprobe.core.events import (
    DnsResultUpdated,
    HopUpdated,
    HostPortsScanned,
    HostScanned,
    ScanProgress,
    SessionStateChanged,
    SubnetStarted,
)
from lanprobe.core.ip_parser import get_address_count, parse_ip_input
from lanprobe.core.logger import configure_logging
from lanprobe.core.mac_lookup import get_vendor_database
from lanprobe.core.models import HostResult, SubnetList, TraceSession
from lanprobe.core.net_tools import get_active_subnet, get_connected_subnets
from lanprobe.core.port_scan import PortScanner
from lanprobe.core.runtime_args import RuntimeArgs, parse_args
from lanprobe.core.scan_config import AppConfig, PortScanRequest
from lanprobe.core.subnet_scan import SubnetScanner
from lanprobe.core.traceroute import TraceSessionRegistry

log = logging.getLogger('core')


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.loglevel, args.logfile)

    try:
        config = AppConfig.from_file(args.config) if args.config else AppConfig()
        apply_overrides(config, args)
    except (OSError, ValueError) as e:
        log.critical(f'Unable to load configuration: {e}')
        return 2

    try:
        return asyncio.run(dispatch(args, config))
    except (LanprobeError, ValueError) as e:
        log.error(str(e))
        return 2
    except KeyboardInterrupt:
        log.info('Interrupted')
        return 130
    except Exception as e:  # pylint: disable=broad-except
        log.critical(f'Unexpected failure: {e}')
        log.debug(traceback.format_exc())
        return 1


def apply_overrides(config: AppConfig, args: RuntimeArgs) -> None:
    """Command line flags win over the config file."""
    if args.concurrency:
        config.scan.max_concurrency = args.concurrency
    if args.ports and args.command in ('scan', 'auto'):
        config.scan.scan_ports = True
        config.scan.port_request = PortScanRequest(mode=args.ports, custom_ports=args.custom_ports)
    if args.window:
        config.trace.window_minutes = args.window


async def dispatch(args: RuntimeArgs, config: AppConfig) -> int:
    handlers = {
        'scan': lambda: run_scan(args, config, parse_ip_input(','.join(args.targets))),
        'auto': lambda: run_auto(args, config),
        'subnets': lambda: run_subnets(config),
        'ports': lambda: run_ports(args, config),
        'dns': lambda: run_dns(args, config),
        'trace': lambda: run_trace(args, config),
    }
    return await handlers[args.command]()


def _cancel_on_interrupt(cancel: CancelToken) -> None:
    """
    First Ctrl+C cancels cooperatively so partial results still print. The
    handler removes itself, so a second Ctrl+C interrupts outright.
    """
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        loop.remove_signal_handler(signal.SIGINT)
        log.warning('Cancelling, press Ctrl+C again to abort')
        cancel.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        # windows event loops have no signal handlers
        pass


async def _drain(queue: asyncio.Queue, handler: Callable[[object], None]) -> None:
    while True:
        message = await queue.get()
        if message is None:
            break
        handler(message)


# Scanning
###############################

class ScanEventPrinter:
    """Logs scan events, with progress every 10 percent."""

    def __init__(self):
        self._last_step = -1

    def __call__(self, message) -> None:
        if isinstance(message, SubnetStarted):
            log.info(f'Scanning {message.cidr} ({message.count} hosts)')
        elif isinstance(message, ScanProgress):
            step = int(message.percent // 10)
            if step != self._last_step:
                self._last_step = step
                log.info(f'Progress {message.percent:.0f}% '
                         f'({message.overall_completed}/{message.overall_total})')
        elif isinstance(message, HostScanned) and message.result.alive:
            r = message.result
            log.info(f'Found {r.ip} {r.hostname} {r.mac} {r.vendor}'.rstrip())
        elif isinstance(message, HostPortsScanned):
            log.info(f'{message.result.ip}: {message.result.port_summary}')


def host_table(results: List[HostResult]) -> str:
    rows = []
    for r in results:
        if not r.alive and not r.has_mac:
            continue
        if r.has_ports:
            ports = ', '.join(r.open_ports)
        elif r.show_no_ports_message:
            ports = 'No open ports'
        else:
            ports = ''
        rows.append([r.ip, r.status, r.hostname, r.mac, r.vendor, r.os_type, r.ping_display, ports])
    headers = ['IP', 'Status', 'Hostname', 'MAC', 'Vendor', 'OS', 'Ping', 'Ports']
    return tabulate(rows, headers=headers, tablefmt='grid')


async def run_scan(args: RuntimeArgs, config: AppConfig, cidrs: List[str]) -> int:
    cancel = CancelToken()
    _cancel_on_interrupt(cancel)

    vendors = get_vendor_database()
    await vendors.refresh_async(force=args.refresh_vendors)

    events: asyncio.Queue = asyncio.Queue()
    scanner = SubnetScanner(config.scan, events, vendors)
    printer = asyncio.create_task(_drain(events, ScanEventPrinter()))
    cancelled = False
    try:
        results = await scanner.scan_subnets(cidrs, cancel)
    except ScanCancelled as e:
        results = e.partial_results
        cancelled = True
    finally:
        events.put_nowait(None)
        await printer
        log.debug(scanner.debug_active_scan())

    print(host_table(results))
    online = sum(1 for r in results if r.alive)
    print(f'{online} online of {len(results)} scanned'
          + (' (cancelled)' if cancelled else ''))
    return 1 if cancelled else 0


def discovered_subnets(max_hosts: int) -> SubnetList:
    """Connected subnets small enough to scan with ``max_hosts``."""
    subnets = SubnetList()
    for cidr, label in get_connected_subnets():
        count = get_address_count(cidr)
        if count > max_hosts:
            log.warning(f'Skipping {cidr}: {count} hosts exceeds the limit of {max_hosts}')
            continue
        try:
            subnets.add(cidr, label)
        except SubnetValidationError as e:
            log.warning(f'Skipping {cidr} ({label}): {e}')
    return subnets


async def run_auto(args: RuntimeArgs, config: AppConfig) -> int:
    cidrs = [e.cidr for e in discovered_subnets(config.scan.max_hosts).included()]
    if not cidrs:
        cidrs = [get_active_subnet()]
    log.info(f'Auto-discovered subnets: {", ".join(cidrs)}')
    return await run_scan(args, config, cidrs)


async def run_subnets(config: AppConfig) -> int:
    """Every connected subnet, including ones too large to scan."""
    rows = []
    for cidr, label in get_connected_subnets():
        count = get_address_count(cidr)
        rows.append([cidr, label, count, 'yes' if 0 < count <= config.scan.max_hosts else 'no'])
    print(tabulate(rows, headers=['Subnet', 'Interface', 'Hosts', 'Scannable'], tablefmt='grid'))
    return 0


async def run_ports(args: RuntimeArgs, config: AppConfig) -> int:
    cancel = CancelToken()
    _cancel_on_interrupt(cancel)
    request = PortScanRequest(mode=args.ports, custom_ports=args.custom_ports)
    request.validate()
    scanner = PortScanner(config.scan.port_config)

    def on_batch(last_port: int, max_port: int) -> None:
        log.debug(f'Scanned through port {last_port}/{max_port}')

    rows = []
    try:
        for ip in args.targets:
            open_ports = await scanner.scan_ports(ip, request, cancel, on_batch=on_batch)
            rows.append([ip, len(open_ports), '\n'.join(open_ports) or 'No open ports'])
    except ScanCancelled:
        log.warning('Port scan cancelled')
    print(tabulate(rows, headers=['Host', 'Open', 'Ports'], tablefmt='grid'))
    return 1 if cancel.cancelled else 0


# DNS benchmark
###############################

def parse_server_args(values: List[str]) -> List[Tuple[str, str]]:
    """'Name=1.2.3.4' or a bare address (used as its own name)."""
    servers = []
    for value in values:
        name, sep, address = value.partition('=')
        if not sep:
            name, address = value, value
        servers.append((name.strip(), address.strip()))
    return servers


def _fmt_ms(value: Optional[float]) -> str:
    return '-' if value is None else f'{value:.1f}'


def dns_table(results) -> str:
    rows = [[
        r.name, r.address,
        _fmt_ms(r.cached_min), _fmt_ms(r.cached_avg), _fmt_ms(r.cached_max),
        _fmt_ms(r.uncached_min), _fmt_ms(r.uncached_avg), _fmt_ms(r.uncached_max),
        r.uncached_failures,
    ] for r in results]
    headers = ['Name', 'Address', 'Cached min', 'Cached avg', 'Cached max',
               'Uncached min', 'Uncached avg', 'Uncached max', 'Failures']
    return tabulate(rows, headers=headers, tablefmt='grid')


async def run_dns(args: RuntimeArgs, config: AppConfig) -> int:
    cancel = CancelToken()
    _cancel_on_interrupt(cancel)
    servers = parse_server_args(args.servers) if args.servers else default_servers()

    events: asyncio.Queue = asyncio.Queue()

    def show(message) -> None:
        if isinstance(message, DnsResultUpdated):
            r = message.result
            log.debug(f'{r.name}: iteration {r.iterations}, uncached avg {_fmt_ms(r.uncached_avg)}')

    printer = asyncio.create_task(_drain(events, show))
    benchmark = DnsBenchmark(config.dns, events)
    cancelled = False
    try:
        results = await benchmark.benchmark_servers(servers, args.duration, cancel)
    except ScanCancelled as e:
        results = e.partial_results
        cancelled = True
    finally:
        events.put_nowait(None)
        await printer

    print(dns_table(results))
    return 1 if cancelled else 0


# Trace
###############################

def trace_summary_table(sessions: List[TraceSession]) -> str:
    rows = [[
        s.destination, s.status, s.elapsed_display,
        f'{s.average_latency:.1f}', f'{s.max_latency:.0f}', f'{s.packet_loss:.1f}%',
        len(s.filtered_history),
        f'{s.x_axis_start_label} .. {s.x_axis_end_label}',
    ] for s in sessions]
    headers = ['Destination', 'Status', 'Elapsed', 'Avg ms', 'Max ms', 'Loss', 'Samples', 'Window']
    return tabulate(rows, headers=headers, tablefmt='grid')


def hop_table(session: TraceSession) -> str:
    rows = [[h.hop, h.address, h.hostname, h.latency_display] for h in session.hops]
    return tabulate(rows, headers=['Hop', 'Address', 'Hostname', 'Latency'], tablefmt='grid')


async def run_trace(args: RuntimeArgs, config: AppConfig) -> int:
    cancel = CancelToken()
    _cancel_on_interrupt(cancel)

    events: asyncio.Queue = asyncio.Queue()

    def show(message) -> None:
        if isinstance(message, SessionStateChanged):
            log.info(f'{message.destination}: {message.state.value}'
                     + (f' ({message.reason})' if message.reason else ''))
        elif isinstance(message, HopUpdated):
            h = message.hop
            log.debug(f'{message.destination} hop {h.hop}: {h.address} {h.latency_display}')

    printer = asyncio.create_task(_drain(events, show))
    registry = TraceSessionRegistry(config.trace, events)
    for destination in args.targets:
        if registry.add(destination) is None:
            log.warning(f'{destination} listed more than once')

    registry.start_all()
    try:
        await cancel.sleep(args.duration if args.duration is not None else 30.0)
    except ScanCancelled:
        log.info('Stopping traces')
    registry.stop_all()
    await registry.wait_all()
    events.put_nowait(None)
    await printer

    sessions = registry.sessions()
    for session in sessions:
        session.refresh()
        print(f'\n{session.destination}')
        print(hop_table(session))
    print(trace_summary_table(sessions))
    return 0
