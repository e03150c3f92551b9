"""
URL helpers shared by capture, restore and organize.

Internal browser pages cannot be recreated from their URL, so they are never
captured or restored.
"""

from __future__ import annotations

from urllib.parse import urlsplit

__all__ = ['NON_RESTORABLE_PREFIXES', 'domain_of', 'is_restorable_url', 'normalize_url']

NON_RESTORABLE_PREFIXES = (
    'chrome://',
    'chrome-extension://',
    'edge://',
    'about:',
    'devtools://',
    'view-source:',
)


def is_restorable_url(url: str | None) -> bool:
    """True if a tab with this URL can be recreated in a fresh environment."""
    if not url:
        return False
    return not url.lower().startswith(NON_RESTORABLE_PREFIXES)


def normalize_url(url: str) -> str:
    """
    Scheme-stripped hostname + path + query.

    Used as the last reconciliation tier, so 'http://Example.com/a?x=1' and
    'https://example.com/a?x=1' compare equal. Unparseable or host-less URLs
    are returned unchanged.

    Examples:
        >>> normalize_url('https://mail.x.com')
        'mail.x.com/'

        >>> normalize_url('http://Example.com/a?q=1#frag')
        'example.com/a?q=1'
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return url
    if not parts.scheme or not hostname:
        return url
    path = parts.path or '/'
    query = f'?{parts.query}' if parts.query else ''
    return f'{hostname}{path}{query}'


def domain_of(url: str | None) -> str | None:
    """Hostname without a leading 'www.', or None for URLs without a host."""
    if not url:
        return None
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname.removeprefix('www.')
