"""
Configuration dataclasses for scans, DNS benchmarks and trace sessions.

Every config round-trips through plain dicts (``to_dict`` / ``from_dict``) so
it can be loaded from a JSON file. Unknown keys are ignored.
"""

import json
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Union

from lanprobe.core.ip_parser import MAX_HOST_LIMIT
from lanprobe.core.models.enums import PortScanMode
from lanprobe.core.port_manager import parse_port_list


def _known_fields(cls, data: dict) -> Dict[str, Any]:
    # Only use keys that are fields of cls
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


@dataclass
class PingConfig:
    """Ping retry policy used for host reachability."""
    attempts: int = 3
    timeout: float = 1.0
    retry_delay: float = 0.2

    @staticmethod
    def from_dict(data: dict) -> 'PingConfig':
        return PingConfig(**_known_fields(PingConfig, data))

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self):
        return f'PingCfg(attempts={self.attempts}, timeout={self.timeout}, retry_delay={self.retry_delay})'


@dataclass
class NetBiosConfig:
    timeout: float = 1.0

    @staticmethod
    def from_dict(data: dict) -> 'NetBiosConfig':
        return NetBiosConfig(**_known_fields(NetBiosConfig, data))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PortScanConfig:
    """
    Connect timeouts per mode. ALL mode runs ``batch_size`` probes at a time
    with the shorter ``all_timeout``.
    """
    timeout: float = 0.5
    all_timeout: float = 0.3
    batch_size: int = 500

    @staticmethod
    def from_dict(data: dict) -> 'PortScanConfig':
        return PortScanConfig(**_known_fields(PortScanConfig, data))

    def to_dict(self) -> dict:
        return asdict(self)

    def timeout_for(self, mode: PortScanMode) -> float:
        return self.all_timeout if mode == PortScanMode.ALL else self.timeout


@dataclass
class PortScanRequest:
    mode: PortScanMode = PortScanMode.COMMON
    custom_ports: str = ''

    def __post_init__(self):
        if isinstance(self.mode, str) and not isinstance(self.mode, PortScanMode):
            self.mode = PortScanMode(self.mode.lower())

    def validate(self) -> None:
        """Raise PortListError for a CUSTOM request without usable ports."""
        if self.mode == PortScanMode.CUSTOM:
            parse_port_list(self.custom_ports)

    def custom_port_list(self) -> List[int]:
        return parse_port_list(self.custom_ports)

    @staticmethod
    def from_dict(data: dict) -> 'PortScanRequest':
        return PortScanRequest(**_known_fields(PortScanRequest, data))

    def to_dict(self) -> dict:
        return _plain(asdict(self))

    def __str__(self):
        if self.mode == PortScanMode.CUSTOM:
            return f'PortScan(custom={self.custom_ports!r})'
        return f'PortScan({self.mode.value})'


@dataclass
class ScanConfig:
    max_concurrency: int = 50
    max_hosts: int = MAX_HOST_LIMIT
    resolve_hostnames: bool = True
    netbios_fallback: bool = True
    ptr_timeout: float = 2.0

    # port scan every online host once discovery finishes
    scan_ports: bool = False
    port_request: PortScanRequest = field(default_factory=PortScanRequest)

    ping_config: PingConfig = field(default_factory=PingConfig)
    netbios_config: NetBiosConfig = field(default_factory=NetBiosConfig)
    port_config: PortScanConfig = field(default_factory=PortScanConfig)

    @staticmethod
    def from_dict(data: dict) -> 'ScanConfig':
        init_args = _known_fields(ScanConfig, data)
        # Convert nested configs if they are dicts
        if isinstance(init_args.get('port_request'), dict):
            init_args['port_request'] = PortScanRequest.from_dict(init_args['port_request'])
        if isinstance(init_args.get('ping_config'), dict):
            init_args['ping_config'] = PingConfig.from_dict(init_args['ping_config'])
        if isinstance(init_args.get('netbios_config'), dict):
            init_args['netbios_config'] = NetBiosConfig.from_dict(init_args['netbios_config'])
        if isinstance(init_args.get('port_config'), dict):
            init_args['port_config'] = PortScanConfig.from_dict(init_args['port_config'])
        return ScanConfig(**init_args)

    def to_dict(self) -> dict:
        return _plain(asdict(self))

    def __str__(self):
        return (f'ScanCfg(concurrency={self.max_concurrency}, max_hosts={self.max_hosts}, '
                f'ports={self.port_request if self.scan_ports else "off"})')


@dataclass
class DnsBenchmarkConfig:
    cached_hostname: str = 'google.com'
    # uncached queries go to <random>.<base_domain>
    base_domain: str = 'google.com'
    query_timeout: float = 2.0
    interval: float = 0.5
    duration: float = 10.0
    port: int = 53

    @staticmethod
    def from_dict(data: dict) -> 'DnsBenchmarkConfig':
        return DnsBenchmarkConfig(**_known_fields(DnsBenchmarkConfig, data))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TraceConfig:
    sample_interval: float = 0.2
    sample_timeout: float = 1.0
    hop_interval: float = 10.0
    max_hops: int = 30
    hop_timeout: float = 2.0
    payload_size: int = 1
    max_duration: float = 2 * 60 * 60
    retention: float = 2 * 60 * 60
    window_minutes: int = 1

    @staticmethod
    def from_dict(data: dict) -> 'TraceConfig':
        return TraceConfig(**_known_fields(TraceConfig, data))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AppConfig:
    """All sections of a config file."""
    scan: ScanConfig = field(default_factory=ScanConfig)
    dns: DnsBenchmarkConfig = field(default_factory=DnsBenchmarkConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)

    @staticmethod
    def from_dict(data: dict) -> 'AppConfig':
        data = data or {}
        return AppConfig(
            scan=ScanConfig.from_dict(data.get('scan', {})),
            dns=DnsBenchmarkConfig.from_dict(data.get('dns', {})),
            trace=TraceConfig.from_dict(data.get('trace', {})),
        )

    @staticmethod
    def from_file(path: Union[str, Path]) -> 'AppConfig':
        with open(path, 'r', encoding='utf-8') as f:
            return AppConfig.from_dict(json.load(f))

    def to_dict(self) -> dict:
        return {
            'scan': self.scan.to_dict(),
            'dns': self.dns.to_dict(),
            'trace': self.trace.to_dict(),
        }
