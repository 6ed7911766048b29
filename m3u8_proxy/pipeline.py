"""Pieces of the fetch-and-transform step shared by both entry points.

The HTTP client and the web framework differ between the serverless
handler (httpx + FastAPI) and the standalone server (curl_cffi + Flask);
the decisions below do not.
"""

import enum
from typing import Dict, Mapping, Optional

from m3u8_proxy.config import ProxyConfig
from m3u8_proxy.gate import ProxyRequest
from m3u8_proxy.playlist import PLAYLIST_CONTENT_TYPE

CHUNK_SIZE = 65536

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Range,Origin,Accept,X-Requested-With,Content-Type,Authorization",
    "Access-Control-Expose-Headers": "Content-Length,Content-Range,Accept-Ranges",
    "Access-Control-Allow-Methods": "GET,HEAD,OPTIONS",
}

PASSTHROUGH_HEADERS = (
    "content-type",
    "content-length",
    "content-range",
    "accept-ranges",
    "cache-control",
    "etag",
    "last-modified",
)


class Classification(enum.Enum):
    PLAYLIST = "playlist"
    OPAQUE = "opaque"


def classify(content_type: Optional[str], url: str) -> Classification:
    if "mpegurl" in (content_type or "").lower() or url.lower().endswith(".m3u8"):
        return Classification.PLAYLIST
    return Classification.OPAQUE


def is_success(status: int) -> bool:
    return 200 <= status < 300


def upstream_headers(request: ProxyRequest, config: ProxyConfig) -> Dict[str, str]:
    headers = {
        "User-Agent": request.user_agent or config.user_agent,
        # keep passthrough bytes (and Content-Length) identical to upstream
        "Accept-Encoding": "identity",
    }
    if request.range:
        headers["Range"] = request.range
    return headers


def passthrough_headers(upstream: Mapping[str, str]) -> Dict[str, str]:
    """Pick the forwardable headers out of a case-insensitive upstream mapping."""
    headers = {}
    for name in PASSTHROUGH_HEADERS:
        value = upstream.get(name)
        if value:
            headers[name] = value
    return headers


def playlist_headers(upstream: Mapping[str, str]) -> Dict[str, str]:
    headers = {"Content-Type": PLAYLIST_CONTENT_TYPE}
    cache = upstream.get("cache-control")
    if cache:
        headers["Cache-Control"] = cache
    return headers


def base_origin(request: ProxyRequest, config: ProxyConfig) -> str:
    """Origin the rewritten playlist links point at."""
    if config.public_base_url:
        return config.public_base_url
    proto = (request.forwarded_proto or "").split(",")[0].strip() or "https"
    return f"{proto}://{request.host}"


def with_cors(headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    merged = dict(headers or {})
    merged.update(CORS_HEADERS)
    return merged
