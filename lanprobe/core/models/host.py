"""
Host-related Pydantic models for scanner results.
"""

import traceback as tb_module
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from lanprobe.core.fingerprint import classify_os
from lanprobe.core.ip_parser import ip_sort_key, get_address_count, validate_subnet

# Display sentinels for fields that could not be resolved
NOT_AVAILABLE = "N/A"


class DeviceErrorInfo(BaseModel):
    """Serializable representation of a device error."""
    source: str = Field(description="Method/source where error occurred")
    message: str = Field(description="Error message")
    traceback: Optional[str] = Field(default=None, description="Full traceback if available")

    @classmethod
    def from_exception(cls, exc: Exception, method: str = "unknown") -> "DeviceErrorInfo":
        """Create from an exception."""
        return cls(
            source=method,
            message=str(exc),
            traceback=tb_module.format_exc() if exc.__traceback__ else None
        )


class HostResult(BaseModel):
    """
    Result data for one probed address.

    Created once per probe attempt and mutated in place afterwards (port scan,
    manual rescan). An unreachable host never carries a round-trip time.
    """
    ip: str = Field(description="IPv4 address of the host")
    subnet: str = Field(default="", description="CIDR the host was discovered in")
    alive: bool = Field(default=False, description="Whether the host answered a ping")
    rtt_ms: Optional[float] = Field(default=None, description="Round-trip time of the answering ping")
    ttl: int = Field(default=0, description="TTL of the ping reply, 0 if unknown")
    hostname: str = Field(default=NOT_AVAILABLE, description="PTR or NetBIOS name")
    mac: str = Field(default=NOT_AVAILABLE, description="MAC address from the ARP table")
    vendor: str = Field(default="", description="Shortened OUI vendor name")
    open_ports: List[str] = Field(
        default_factory=list,
        description='Open ports formatted as "port (service)"'
    )
    is_scanning: bool = Field(default=False, description="Single-host rescan in progress")
    is_port_scanning: bool = Field(default=False, description="Port scan in progress")
    has_port_scan_run: bool = Field(default=False, description="A port scan has completed")
    errors: List[DeviceErrorInfo] = Field(
        default_factory=list,
        description="Errors encountered while enriching this host"
    )

    @model_validator(mode='after')
    def _unreachable_has_no_rtt(self) -> 'HostResult':
        if not self.alive and self.rtt_ms is not None:
            self.rtt_ms = None
        return self

    def set_reachability(self, alive: bool, rtt_ms: Optional[float] = None, ttl: int = 0) -> None:
        """Record the outcome of the ping step."""
        self.alive = alive
        self.rtt_ms = rtt_ms if alive else None
        self.ttl = ttl if alive else 0

    @computed_field  # type: ignore[misc]
    @property
    def sort_key(self) -> int:
        """32-bit integer built from the address octets."""
        return ip_sort_key(self.ip)

    @computed_field  # type: ignore[misc]
    @property
    def os_type(self) -> str:
        """Heuristic OS guess from TTL, vendor and hostname."""
        return classify_os(self.ttl, self.vendor, self.hostname)

    @property
    def status(self) -> str:
        return "Online" if self.alive else "Offline"

    @property
    def ping_display(self) -> str:
        if self.alive and self.rtt_ms is not None:
            return f"{round(self.rtt_ms)} ms"
        return "-"

    @property
    def has_mac(self) -> bool:
        return self.mac != NOT_AVAILABLE and bool(self.mac)

    @property
    def has_ports(self) -> bool:
        return bool(self.open_ports)

    @property
    def show_no_ports_message(self) -> bool:
        return self.has_port_scan_run and not self.has_ports

    @property
    def port_summary(self) -> str:
        if not self.open_ports:
            return ""
        return f"{len(self.open_ports)} open"

    def update_from(self, other: 'HostResult') -> None:
        """Copy every enrichable field from a fresh probe of the same host."""
        self.alive = other.alive
        self.rtt_ms = other.rtt_ms
        self.ttl = other.ttl
        self.hostname = other.hostname
        self.mac = other.mac
        self.vendor = other.vendor
        self.errors = list(other.errors)

    def enrichment(self) -> dict:
        """The fields a probe fills in, used to compare two probes of one host."""
        return self.model_dump(include={'ip', 'alive', 'ttl', 'hostname', 'mac', 'vendor'})

    model_config = {
        "json_schema_extra": {
            "example": {
                "ip": "192.168.1.100",
                "subnet": "192.168.1.0/24",
                "alive": True,
                "rtt_ms": 3.0,
                "ttl": 64,
                "hostname": "nas.local",
                "mac": "B8:27:EB:12:34:56",
                "vendor": "Raspberry Pi",
                "open_ports": ["22 (SSH)", "445 (SMB)"],
                "errors": []
            }
        }
    }


class SubnetEntry(BaseModel):
    """A subnet the user wants to scan."""
    cidr: str = Field(description="Subnet in CIDR notation")
    label: Optional[str] = Field(default=None, description="Display label, e.g. the NIC name")
    include: bool = Field(default=True, description="Whether the next scan covers this subnet")

    @field_validator('cidr')
    @classmethod
    def _validate_cidr(cls, value: str) -> str:
        value = value.strip()
        validate_subnet(value)
        return value

    @property
    def host_count(self) -> int:
        return get_address_count(self.cidr)

    @property
    def display(self) -> str:
        if self.label:
            return f"{self.cidr} ({self.label})"
        return self.cidr


class SubnetList:
    """Ordered, duplicate-free collection of SubnetEntry objects."""

    def __init__(self, entries: Optional[List[SubnetEntry]] = None):
        self.entries: List[SubnetEntry] = []
        for entry in entries or []:
            self.add(entry.cidr, entry.label, entry.include)

    def add(self, cidr: str, label: Optional[str] = None,
            include: bool = True) -> Optional[SubnetEntry]:
        """
        Validate and append a subnet.

        Returns the new entry, or None when the CIDR is already present
        (compared case-insensitively). Raises SubnetValidationError for
        malformed or oversized subnets.
        """
        cidr = cidr.strip()
        validate_subnet(cidr)
        if self.contains(cidr):
            return None
        entry = SubnetEntry(cidr=cidr, label=label, include=include)
        self.entries.append(entry)
        return entry

    def contains(self, cidr: str) -> bool:
        key = cidr.strip().lower()
        return any(e.cidr.lower() == key for e in self.entries)

    def remove(self, cidr: str) -> bool:
        key = cidr.strip().lower()
        for i, entry in enumerate(self.entries):
            if entry.cidr.lower() == key:
                del self.entries[i]
                return True
        return False

    def included(self) -> List[SubnetEntry]:
        return [e for e in self.entries if e.include]

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
