"""
Static port tables and custom port-list parsing.
"""

import re
from typing import Dict, List, Optional

from lanprobe.core.errors import PortListError
from lanprobe.core.models.enums import PortScanMode

MIN_PORT = 1
MAX_PORT = 65535

# Curated set probed in COMMON mode
COMMON_PORTS: Dict[int, str] = {
    21: 'FTP',
    22: 'SSH',
    23: 'Telnet',
    25: 'SMTP',
    53: 'DNS',
    80: 'HTTP',
    110: 'POP3',
    135: 'RPC',
    139: 'NetBIOS',
    143: 'IMAP',
    443: 'HTTPS',
    445: 'SMB',
    993: 'IMAPS',
    995: 'POP3S',
    1433: 'MSSQL',
    1723: 'PPTP',
    3306: 'MySQL',
    3389: 'RDP',
    5432: 'PostgreSQL',
    5900: 'VNC',
    8080: 'HTTP-Proxy',
}

# Labels only, these are not probed in COMMON mode
EXTRA_SERVICES: Dict[int, str] = {
    5985: 'WinRM',
    5986: 'WinRM-SSL',
    8443: 'HTTPS-Alt',
    8888: 'HTTP-Dev',
    27017: 'MongoDB',
}

SERVICE_NAMES: Dict[int, str] = {**EXTRA_SERVICES, **COMMON_PORTS}

_SPLIT = re.compile(r'[,\s;]+')


def service_name(port: int) -> Optional[str]:
    return SERVICE_NAMES.get(port)


def format_port(port: int) -> str:
    """Display form: "443 (HTTPS)" for known ports, "12345" otherwise."""
    svc = service_name(port)
    return f'{port} ({svc})' if svc else f'{port}'


def parse_port_list(text: Optional[str]) -> List[int]:
    """
    Parse a comma, space or semicolon separated list of ports.

    Tokens that are not integers in 1-65535 are dropped, duplicates keep their
    first position. Raises PortListError when nothing usable remains.
    """
    ports: List[int] = []
    seen = set()
    for token in _SPLIT.split(text or ''):
        token = token.strip()
        if not token:
            continue
        try:
            port = int(token)
        except ValueError:
            continue
        if port < MIN_PORT or port > MAX_PORT or port in seen:
            continue
        seen.add(port)
        ports.append(port)

    if not ports:
        raise PortListError(f'No valid ports (1-{MAX_PORT}) in {text!r}')
    return ports


class PortManager:
    """Resolves a scan mode to the ports it covers."""

    def get_port_list(self, mode: PortScanMode, custom_ports: str = '') -> Dict[int, Optional[str]]:
        """
        Map of port -> service label for ``mode``.

        ALL mode is not materialized here; callers iterate it in batches.
        """
        if mode == PortScanMode.COMMON:
            return dict(COMMON_PORTS)
        if mode == PortScanMode.CUSTOM:
            return {p: service_name(p) for p in parse_port_list(custom_ports)}
        raise ValueError('ALL mode is iterated in batches, not listed')
