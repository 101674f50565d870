"""
MAC vendor lookup backed by the IEEE OUI registry.

The registry CSV is downloaded at most once every 30 days and cached on disk.
Lookups only ever read the in-memory map; a refresh builds a new map and
swaps it in whole. Until a refresh succeeds a small built-in table is used.
"""

import asyncio
import csv
import io
import logging
import re
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Union

import requests

log = logging.getLogger('MacLookup')

OUI_URL = 'https://standards-oui.ieee.org/oui/oui.csv'
CACHE_DIR = Path.home() / '.lanprobe'
CACHE_FILE_NAME = 'oui_cache.csv'
MAX_DOWNLOAD_BYTES = 10 * 1024 * 1024
HEADER_MARKER = 'Registry,Assignment'
CACHE_MAX_AGE_DAYS = 30
DOWNLOAD_TIMEOUT = 30
# a parsed registry smaller than this is treated as corrupt
MIN_ENTRIES = 100

FALLBACK_VENDORS: Dict[str, str] = {
    '00:50:56': 'VMware',
    '00:0C:29': 'VMware',
    '00:15:5D': 'Hyper-V',
    '00:00:0C': 'Cisco',
    'B8:27:EB': 'Raspberry Pi',
    'DC:A6:32': 'Raspberry Pi',
}

# first match wins, compared case-insensitively
SHORT_VENDOR_NAMES = [
    ('Apple', 'Apple'),
    ('Samsung', 'Samsung'),
    ('Ubiquiti', 'Ubiquiti'),
    ('Google', 'Google'),
    ('Microsoft', 'Microsoft'),
    ('Intel ', 'Intel'),
    ('Dell ', 'Dell'),
    ('Hewlett Packard', 'HP'),
    ('HP Inc', 'HP'),
    ('Cisco', 'Cisco'),
    ('Netgear', 'Netgear'),
    ('TP-Link', 'TP-Link'),
    ('Linksys', 'Linksys'),
    ('Amazon', 'Amazon'),
    ('Sonos', 'Sonos'),
    ('Roku', 'Roku'),
    ('Raspberry Pi', 'Raspberry Pi'),
    ('Espressif', 'Espressif'),
    ('ASUS', 'ASUS'),
    ('ASUSTek', 'ASUS'),
    ('Lenovo', 'Lenovo'),
    ('Aruba', 'Aruba'),
    ('Huawei', 'Huawei'),
    ('Xiaomi', 'Xiaomi'),
    ('VMware', 'VMware'),
    ('Hyper-V', 'Hyper-V'),
    ('Sony', 'Sony'),
    ('LG Elec', 'LG'),
    ('Motorola', 'Motorola'),
    ('D-Link', 'D-Link'),
    ('Belkin', 'Belkin'),
    ('NVIDIA', 'Nvidia'),
    ('Synology', 'Synology'),
    ('QNAP', 'QNAP'),
    ('Nest Labs', 'Nest'),
    ('Ring LLC', 'Ring'),
    ('OnePlus', 'OnePlus'),
    ('Wyze', 'Wyze'),
    ('Hon Hai', 'Foxconn'),
    ('Foxconn', 'Foxconn'),
    ('Murata', 'Murata'),
    ('Realtek', 'Realtek'),
    ('Broadcom', 'Broadcom'),
    ('Qualcomm', 'Qualcomm'),
    ('MediaTek', 'MediaTek'),
]

LEGAL_SUFFIXES = (' Inc', ' LLC', ' Corp', ' Ltd', ' Co.', ' GmbH', ' S.A')


def shorten_vendor_name(name: str) -> str:
    """Canonical short name for well-known vendors, otherwise a trimmed one."""
    name = (name or '').strip()
    lowered = name.lower()
    for needle, short in SHORT_VENDOR_NAMES:
        if needle.lower() in lowered:
            return short

    if len(name) <= 20:
        return name

    cut = min((i for i in (name.find(','), name.find(';')) if i >= 0), default=-1)
    if 0 < cut <= 25:
        return name[:cut].strip()

    for suffix in LEGAL_SUFFIXES:
        idx = lowered.find(suffix.lower())
        if 0 < idx <= 25:
            return name[:idx].strip()

    return name[:22] + '...' if len(name) > 25 else name


def oui_key(mac: str) -> Optional[str]:
    """OUI prefix as "AA:BB:CC" from any common MAC spelling, or None."""
    if not mac:
        return None
    parts = [p for p in re.split(r'[:.\-]', mac.strip().upper()) if p]
    if len(parts) >= 3 and all(len(p) <= 2 for p in parts[:3]):
        digits = ''.join(p.zfill(2) for p in parts[:3])
    else:
        # bare or dotted (b827.eb12.3456) spellings
        digits = ''.join(parts)[:6]
    if len(digits) != 6:
        return None
    try:
        int(digits, 16)
    except ValueError:
        return None
    return f'{digits[0:2]}:{digits[2:4]}:{digits[4:6]}'


def parse_oui_csv(text: str) -> Dict[str, str]:
    """
    Build an OUI map from the IEEE CSV
    (Registry, Assignment, Organization Name, Organization Address).
    """
    ouis: Dict[str, str] = {}
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 3:
            continue
        assignment = row[1].strip().upper()
        if len(assignment) != 6:
            continue
        try:
            int(assignment, 16)
        except ValueError:
            continue
        key = f'{assignment[0:2]}:{assignment[2:4]}:{assignment[4:6]}'
        if key not in ouis:
            ouis[key] = shorten_vendor_name(row[2].strip().strip('"'))
    return ouis


class VendorDatabase:
    """OUI -> vendor map with a disk cache and a built-in fallback."""

    def __init__(self, cache_file: Optional[Union[str, Path]] = None,
                 url: str = OUI_URL, session: Optional[requests.Session] = None):
        self.cache_file = Path(cache_file) if cache_file else CACHE_DIR / CACHE_FILE_NAME
        self.url = url
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._ouis: Dict[str, str] = dict(FALLBACK_VENDORS)
        self.source = 'fallback'

    def lookup(self, mac: Optional[str]) -> str:
        """Vendor for ``mac`` or "" when unknown. Never touches the network."""
        key = oui_key(mac or '')
        if key is None:
            return ''
        with self._lock:
            ouis = self._ouis
        return ouis.get(key, '')

    def __len__(self) -> int:
        with self._lock:
            return len(self._ouis)

    def cache_is_fresh(self) -> bool:
        try:
            age = time.time() - self.cache_file.stat().st_mtime
        except OSError:
            return False
        return age < CACHE_MAX_AGE_DAYS * 24 * 60 * 60

    def refresh(self, force: bool = False) -> bool:
        """
        Download the registry if the cache is stale (or ``force``), then load it.

        Returns True when the full registry is in use. A failed download
        falls back to a stale cache, then to the built-in table.
        """
        with self._refresh_lock:
            if force or not self.cache_is_fresh():
                try:
                    self._download()
                except (requests.RequestException, OSError, ValueError) as e:
                    log.warning(f'OUI registry download failed: {e}')
            try:
                return self.load_cache()
            except OSError as e:
                log.warning(f'Vendor cache unreadable, using built-in table: {e}')
                self._install(dict(FALLBACK_VENDORS), 'fallback')
                return False

    async def refresh_async(self, force: bool = False) -> bool:
        return await asyncio.to_thread(self.refresh, force)

    def load_cache(self) -> bool:
        if not self.cache_file.exists():
            self._install(dict(FALLBACK_VENDORS), 'fallback')
            return False
        text = self.cache_file.read_text(encoding='utf-8', errors='replace')
        ouis = parse_oui_csv(text)
        if len(ouis) <= MIN_ENTRIES:
            log.warning(f'Vendor cache only had {len(ouis)} entries, using built-in table')
            self._install(dict(FALLBACK_VENDORS), 'fallback')
            return False
        self._install(ouis, 'ieee')
        log.info(f'Loaded {len(ouis)} OUI vendors from {self.cache_file}')
        return True

    def _install(self, ouis: Dict[str, str], source: str) -> None:
        with self._lock:
            self._ouis = ouis
            self.source = source

    def _download(self) -> None:
        log.info(f'Downloading OUI registry from {self.url}')
        with self.session.get(self.url, timeout=DOWNLOAD_TIMEOUT, stream=True) as resp:
            resp.raise_for_status()
            length = resp.headers.get('Content-Length')
            if length and length.isdigit() and int(length) > MAX_DOWNLOAD_BYTES:
                raise ValueError('OUI registry is too large')

            chunks = []
            received = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                received += len(chunk)
                if received > MAX_DOWNLOAD_BYTES:
                    raise ValueError('OUI registry is too large')
                chunks.append(chunk)

        text = b''.join(chunks).decode('utf-8', errors='replace')
        if not text.strip() or HEADER_MARKER not in text:
            raise ValueError('Unexpected OUI registry format')

        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.cache_file.with_suffix('.tmp')
        tmp.write_text(text, encoding='utf-8')
        tmp.replace(self.cache_file)


_DEFAULT_DB: Optional[VendorDatabase] = None
_DEFAULT_LOCK = threading.Lock()


def get_vendor_database() -> VendorDatabase:
    """Process-wide database shared by every scanner."""
    global _DEFAULT_DB
    with _DEFAULT_LOCK:
        if _DEFAULT_DB is None:
            _DEFAULT_DB = VendorDatabase()
        return _DEFAULT_DB
