"""
Single-host probing: retried ping, then hostname / MAC / vendor enrichment.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from lanprobe.core import net_tools
from lanprobe.core.cancel import CancelToken
from lanprobe.core.errors import ScanCancelled
from lanprobe.core.fingerprint import classify_os
from lanprobe.core.mac_lookup import VendorDatabase, get_vendor_database
from lanprobe.core.models import NOT_AVAILABLE, DeviceErrorInfo, HostResult
from lanprobe.core.net_tools import PingReply
from lanprobe.core.scan_config import ScanConfig

log = logging.getLogger('HostProbe')

T = TypeVar('T')

__all__ = ['HostProbe', 'classify_os']


class HostProbe:
    """
    Probes one address at a time. Holds no per-host state, so one instance
    can serve every concurrent probe of a scan.
    """

    def __init__(self, config: Optional[ScanConfig] = None,
                 vendors: Optional[VendorDatabase] = None):
        self.cfg = config or ScanConfig()
        self.vendors = vendors or get_vendor_database()

    async def probe(self, ip: str, cancel: Optional[CancelToken] = None,
                    subnet: str = '') -> HostResult:
        """
        Ping ``ip`` and enrich the result.

        Transient failures become sentinels; only cancellation raises
        (ScanCancelled). Unreachable hosts still get an ARP cache check since
        the device may have been seen recently.
        """
        cancel = cancel or CancelToken()
        result = HostResult(ip=ip, subnet=subnet)

        reply = await self.ping_host(ip, cancel, result)
        if reply.success:
            result.set_reachability(True, reply.rtt_ms, reply.ttl)
            result.hostname = await self._guard(
                result, 'resolve_hostname', self.resolve_hostname(ip, cancel), NOT_AVAILABLE
            )

        result.mac = await self._guard(result, 'resolve_mac', self.resolve_mac(ip, cancel), NOT_AVAILABLE)
        if result.has_mac:
            result.vendor = self.vendors.lookup(result.mac)

        log.debug(f'{ip}: {result.status} mac={result.mac} host={result.hostname}')
        return result

    async def ping_host(self, ip: str, cancel: CancelToken,
                        result: Optional[HostResult] = None) -> PingReply:
        """
        First successful reply out of ``attempts`` pings. A ping that raises
        counts as a failed attempt and is recorded on ``result``.
        """
        ping_cfg = self.cfg.ping_config
        for attempt in range(ping_cfg.attempts):
            cancel.raise_if_cancelled()
            try:
                reply = await cancel.run(net_tools.ping(ip, timeout=ping_cfg.timeout))
            except ScanCancelled:
                raise
            except Exception as e:  # pylint: disable=broad-except
                log.debug(f'ping attempt {attempt + 1} failed for {ip}: {e!r}')
                if result is not None:
                    result.errors.append(DeviceErrorInfo.from_exception(e, 'ping'))
                reply = PingReply(success=False)
            if reply.success:
                return reply
            if attempt < ping_cfg.attempts - 1:
                await cancel.sleep(ping_cfg.retry_delay)
        return PingReply(success=False)

    async def resolve_hostname(self, ip: str, cancel: CancelToken) -> str:
        """PTR first, then a NetBIOS node status query to the host itself."""
        if self.cfg.resolve_hostnames:
            name = await cancel.run(net_tools.reverse_lookup(ip, timeout=self.cfg.ptr_timeout))
            if name:
                return name
        if self.cfg.netbios_fallback:
            name = await cancel.run(
                net_tools.query_netbios_name(ip, timeout=self.cfg.netbios_config.timeout)
            )
            if name:
                return name
        return NOT_AVAILABLE

    async def resolve_mac(self, ip: str, cancel: CancelToken) -> str:
        mac = await cancel.run(net_tools.resolve_mac(ip))
        return mac or NOT_AVAILABLE

    async def _guard(self, result: HostResult, method: str,
                     step: Awaitable[T], default: T) -> T:
        try:
            return await step
        except (ScanCancelled, asyncio.CancelledError):
            raise
        except Exception as e:  # pylint: disable=broad-except
            log.debug(f'{method} failed for {result.ip}: {e!r}')
            result.errors.append(DeviceErrorInfo.from_exception(e, method))
            return default
