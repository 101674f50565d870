import argparse
from dataclasses import dataclass, field, fields
from typing import List, Optional

from lanprobe.core.models.enums import PortScanMode

COMMANDS = ('scan', 'auto', 'subnets', 'ports', 'dns', 'trace')


@dataclass
class RuntimeArgs:
    command: str = 'auto'
    targets: List[str] = field(default_factory=list)
    config: Optional[str] = None
    loglevel: str = 'INFO'
    logfile: Optional[str] = None
    ports: Optional[str] = None
    custom_ports: str = ''
    concurrency: Optional[int] = None
    duration: Optional[float] = None
    window: Optional[int] = None
    servers: List[str] = field(default_factory=list)
    refresh_vendors: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='lanprobe', description='Local network scanner and latency monitor')
    parser.add_argument('--config', type=str, help='JSON config file with scan/dns/trace sections')
    parser.add_argument('--loglevel', default='INFO', help='Set the log level')
    parser.add_argument('--logfile', type=str, help='Also log to this (rotating) file')

    sub = parser.add_subparsers(dest='command')

    scan = sub.add_parser('scan', help='Scan one or more subnets')
    scan.add_argument('targets', nargs='+', metavar='CIDR')
    _add_scan_options(scan)

    auto = sub.add_parser('auto', help='Scan every subnet the host is connected to')
    _add_scan_options(auto)

    sub.add_parser('subnets', help='List the subnets this host is connected to')

    ports = sub.add_parser('ports', help='Port scan specific hosts')
    ports.add_argument('targets', nargs='+', metavar='IP')
    ports.add_argument('--mode', dest='ports', default=PortScanMode.COMMON.value,
                       choices=[m.value for m in PortScanMode])
    ports.add_argument('--custom-ports', default='', help='e.g. "22, 80, 443"')

    dns = sub.add_parser('dns', help='Benchmark DNS resolvers')
    dns.add_argument('--duration', type=float, help='Seconds per resolver')
    dns.add_argument('--server', dest='servers', action='append', default=[],
                     metavar='[NAME=]ADDRESS', help='Resolver to test (repeatable)')

    trace = sub.add_parser('trace', help='Monitor latency and hops to destinations')
    trace.add_argument('targets', nargs='+', metavar='DESTINATION')
    trace.add_argument('--duration', type=float, default=30.0, help='Seconds to monitor')
    trace.add_argument('--window', type=int, help='Chart window in minutes')

    return parser


def _add_scan_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--ports', choices=[m.value for m in PortScanMode],
                        help='Port scan every online host in this mode')
    parser.add_argument('--custom-ports', default='', help='Port list for --ports custom')
    parser.add_argument('--concurrency', type=int, help='Maximum probes in flight')
    parser.add_argument('--refresh-vendors', action='store_true',
                        help='Download the vendor registry even if the cache is fresh')


def parse_args(argv: Optional[List[str]] = None) -> RuntimeArgs:
    parsed = build_parser().parse_args(argv)
    known = {f.name for f in fields(RuntimeArgs)}
    values = {k: v for k, v in vars(parsed).items() if k in known and v is not None}
    return RuntimeArgs(**values)
