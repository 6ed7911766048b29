"""
Tests for classification and header handling.
"""
import pytest

from m3u8_proxy.config import ProxyConfig
from m3u8_proxy.gate import ProxyRequest
from m3u8_proxy.pipeline import (
    CORS_HEADERS,
    Classification,
    base_origin,
    classify,
    is_success,
    passthrough_headers,
    playlist_headers,
    upstream_headers,
    with_cors,
)


@pytest.mark.parametrize("content_type,url", [
    ("application/vnd.apple.mpegurl", "https://cdn.example.com/live"),
    ("application/x-mpegURL; charset=utf-8", "https://cdn.example.com/live"),
    ("audio/mpegurl", "https://cdn.example.com/live"),
    ("text/plain", "https://cdn.example.com/live/INDEX.M3U8"),
    (None, "https://cdn.example.com/live/index.m3u8"),
])
def test_playlist_classification(content_type, url):
    assert classify(content_type, url) is Classification.PLAYLIST


@pytest.mark.parametrize("content_type,url", [
    ("video/mp2t", "https://cdn.example.com/live/seg0.ts"),
    ("application/octet-stream", "https://cdn.example.com/key.bin"),
    (None, "https://cdn.example.com/live/index.m3u8?token=x"),
])
def test_opaque_classification(content_type, url):
    assert classify(content_type, url) is Classification.OPAQUE


def test_is_success():
    assert is_success(200)
    assert is_success(206)
    assert not is_success(304)
    assert not is_success(404)
    assert not is_success(500)


def test_upstream_headers_forward_range_and_agent():
    request = ProxyRequest(method="GET", range="bytes=0-99", user_agent="VLC/3.0")
    headers = upstream_headers(request, ProxyConfig())
    assert headers["Range"] == "bytes=0-99"
    assert headers["User-Agent"] == "VLC/3.0"
    assert headers["Accept-Encoding"] == "identity"


def test_upstream_headers_default_agent_and_no_range():
    headers = upstream_headers(ProxyRequest(method="GET"), ProxyConfig(user_agent="my-proxy"))
    assert headers["User-Agent"] == "my-proxy"
    assert "Range" not in headers


def test_passthrough_headers_filter():
    upstream = {
        "content-type": "video/mp2t",
        "content-length": "4",
        "content-range": "bytes 0-3/10",
        "accept-ranges": "bytes",
        "etag": '"abc"',
        "set-cookie": "session=1",
        "server": "nginx",
        "last-modified": "",
    }
    assert passthrough_headers(upstream) == {
        "content-type": "video/mp2t",
        "content-length": "4",
        "content-range": "bytes 0-3/10",
        "accept-ranges": "bytes",
        "etag": '"abc"',
    }


def test_playlist_headers():
    assert playlist_headers({}) == {"Content-Type": "application/vnd.apple.mpegurl; charset=utf-8"}
    assert playlist_headers({"cache-control": "max-age=2"})["Cache-Control"] == "max-age=2"


def test_base_origin_from_headers():
    request = ProxyRequest(method="GET", forwarded_proto="http", host="proxy.local:8080")
    assert base_origin(request, ProxyConfig()) == "http://proxy.local:8080"


def test_base_origin_defaults_to_https_and_first_proto():
    assert base_origin(ProxyRequest(method="GET", host="p.example"), ProxyConfig()) == "https://p.example"
    request = ProxyRequest(method="GET", forwarded_proto="http, https", host="p.example")
    assert base_origin(request, ProxyConfig()) == "http://p.example"


def test_public_base_url_wins_over_headers():
    request = ProxyRequest(method="GET", forwarded_proto="http", host="attacker.example")
    config = ProxyConfig(public_base_url="https://proxy.example.org")
    assert base_origin(request, config) == "https://proxy.example.org"


def test_with_cors():
    headers = with_cors({"content-type": "video/mp2t"})
    assert headers["content-type"] == "video/mp2t"
    for name, value in CORS_HEADERS.items():
        assert headers[name] == value
    assert with_cors()["Access-Control-Allow-Methods"] == "GET,HEAD,OPTIONS"
