"""m3u8 rewriting.

Every URI line of a playlist is resolved against the playlist's own URL and
replaced by a link back to this proxy, so the player keeps fetching
variants, segments and keys through us. Tag lines (``#EXT...``) and blank
lines are left byte-identical. Sub-playlists are not fetched here: each one
is rewritten when the player requests it.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Union
from urllib.parse import quote, urljoin, urlsplit

import idna

logger = logging.getLogger(__name__)

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl; charset=utf-8"

_LINE_SPLIT = re.compile(r"\r?\n")
# Characters encodeURIComponent leaves alone on top of quote()'s defaults.
_QUERY_SAFE = "!*'()"
_SUPPORTED_SCHEMES = ("http", "https")
# schemes whose URLs cannot exist without a host
_HOST_SCHEMES = ("http", "https", "ftp", "ws", "wss")
_FORBIDDEN_HOST_CHARS = frozenset(" \t\r\n#%/<>?@\\^|[]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass(frozen=True)
class Resolved:
    url: str


@dataclass(frozen=True)
class Unresolvable:
    reference: str
    reason: str


Resolution = Union[Resolved, Unresolvable]


def _parse_absolute(url: str) -> Resolution:
    """Check *url* parses as an absolute URL of any scheme."""
    if _CONTROL_CHARS.search(url):
        return Unresolvable(url, "control characters in URL")
    try:
        parts = urlsplit(url)
        # .port raises for non-numeric or out of range ports
        parts.port
    except ValueError as e:
        return Unresolvable(url, str(e))

    if not parts.scheme:
        return Unresolvable(url, "not an absolute URL")
    host = parts.hostname
    if parts.scheme.lower() in _HOST_SCHEMES and not host:
        return Unresolvable(url, "missing host")
    if host and _FORBIDDEN_HOST_CHARS.intersection(host):
        return Unresolvable(url, "invalid host %r" % host)
    return Resolved(url)


def _encodable_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    try:
        if host.isascii():
            # plain ASCII labels go out as-is; only A-labels need to decode
            for label in host.split("."):
                if label.startswith("xn--"):
                    idna.decode(label)
        else:
            idna.encode(host)
    except UnicodeError:
        return False
    return True


def validate_target(url: str) -> Resolution:
    """Validate that *url* is an absolute http(s) URL we could fetch."""
    result = _parse_absolute(url)
    if isinstance(result, Unresolvable):
        return result

    parts = urlsplit(url)
    if parts.scheme.lower() not in _SUPPORTED_SCHEMES:
        return Unresolvable(url, "unsupported scheme %r" % parts.scheme)
    if not _encodable_host(parts.hostname):
        return Unresolvable(url, "invalid IDNA host %r" % parts.hostname)
    return result


def resolve_reference(reference: str, base_url: str) -> Resolution:
    """Resolve a playlist URI line against the playlist URL (RFC 3986)."""
    reference = reference.strip()
    try:
        absolute = urljoin(base_url, reference)
    except ValueError as e:
        return Unresolvable(reference, str(e))
    return _parse_absolute(absolute)


def proxied_url(absolute_url: str, base_origin: str, proxy_path: str) -> str:
    return f"{base_origin}{proxy_path}?url={quote(absolute_url, safe=_QUERY_SAFE)}"


def rewrite_line(line: str, playlist_url: str, base_origin: str, proxy_path: str) -> str:
    if not line.strip() or line.startswith("#"):
        return line

    result = resolve_reference(line, playlist_url)
    if isinstance(result, Unresolvable):
        logger.debug("Leaving playlist line %r unchanged: %s", line, result.reason)
        return line
    return proxied_url(result.url, base_origin, proxy_path)


def rewrite(text: str, playlist_url: str, base_origin: str, proxy_path: str = "/api/proxy") -> str:
    """Rewrite every URI line of *text* to go through the proxy at *base_origin*."""
    return "\n".join(
        rewrite_line(line, playlist_url, base_origin, proxy_path)
        for line in _LINE_SPLIT.split(text)
    )
