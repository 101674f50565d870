"""
Best-effort operating system guess from a ping TTL plus vendor/hostname hints.

Typical initial TTLs: Windows 128, Linux/Unix/iOS/Android 64, network gear 255.
A TTL only ever decreases along the path, so ranges are used instead of exact
values. This is a heuristic and is never authoritative.
"""

APPLE_HOSTNAME_HINTS = ('iphone', 'ipad', 'macbook', 'imac', 'apple')


def classify_os(ttl: int, vendor: str = '', hostname: str = '') -> str:
    """Return "Apple", "Windows", "Linux" or "" when nothing matches."""
    if ttl <= 0:
        return ''

    vendor_l = (vendor or '').lower()
    hostname_l = (hostname or '').lower()

    if 'apple' in vendor_l or any(hint in hostname_l for hint in APPLE_HOSTNAME_HINTS):
        return 'Apple'

    if 100 < ttl <= 128:
        return 'Windows'
    if 32 < ttl <= 64:
        return 'Linux'

    # secondary signals for TTLs outside the usual ranges
    if 'microsoft' in vendor_l:
        return 'Windows'
    if 'google' in vendor_l:
        return 'Linux'
    return ''
