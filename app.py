import logging
import os

from curl_cffi import CurlError
from curl_cffi import requests as crequests
from flask import Flask, Response, request, stream_with_context

from m3u8_proxy import pipeline, playlist
from m3u8_proxy.config import ProxyConfig, configure_logging, warn_if_open
from m3u8_proxy.gate import (
    FetchFailure,
    Preflight,
    ProxyRequest,
    Rejected,
    UpstreamError,
    authorize,
)
from m3u8_proxy.pipeline import Classification

# --- CONFIGURATION ---
PORT = int(os.environ.get("PORT", 5000))
PROXY_PATH = "/proxy"
IMPERSONATE = "chrome124"

logger = logging.getLogger(__name__)


def curl_fetch(url, headers, timeout):
    # explicit headers override the impersonation defaults
    return crequests.get(
        url,
        headers=headers,
        impersonate=IMPERSONATE,
        allow_redirects=True,
        stream=True,
        timeout=timeout,
    )


def charset_of(content_type):
    for param in (content_type or "").split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"')
    return "utf-8"


def decode_text(data, content_type):
    try:
        return data.decode(charset_of(content_type), errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def build_proxy_request():
    return ProxyRequest(
        method=request.method,
        target_url=request.args.get("url"),
        range=request.headers.get("Range"),
        header_token=request.headers.get("X-Proxy-Token"),
        query_token=request.args.get("token"),
        user_agent=request.headers.get("User-Agent"),
        forwarded_proto=request.headers.get("X-Forwarded-Proto"),
        host=request.headers.get("Host") or request.host,
    )


def error_response(error):
    return Response(error.body, status=error.status, headers=pipeline.with_cors(), mimetype="text/plain")


def create_app(config=None, fetch=curl_fetch):
    config = config or ProxyConfig.from_env()
    app = Flask(__name__)

    @app.route(PROXY_PATH, methods=["GET", "HEAD", "OPTIONS"])
    def proxy():
        proxy_request = build_proxy_request()

        # 1. Gate: no upstream call before this passes
        decision = authorize(proxy_request, config.policy)
        if isinstance(decision, Preflight):
            return Response(status=decision.status, headers=pipeline.with_cors())
        if isinstance(decision, Rejected):
            return error_response(decision.error)

        target_url = decision.target_url

        # 2. Fetch, once
        try:
            resp = fetch(target_url, pipeline.upstream_headers(proxy_request, config), config.timeout)
        except CurlError as e:
            logger.error("Fetching %s failed: %r", target_url, e)
            return error_response(FetchFailure())

        if not pipeline.is_success(resp.status_code):
            resp.close()
            logger.warning("Upstream %s responded %d", target_url, resp.status_code)
            return error_response(UpstreamError(resp.status_code))

        content_type = resp.headers.get("content-type")

        # 3. M3U8 rewrite
        if pipeline.classify(content_type, target_url) is Classification.PLAYLIST:
            try:
                text = decode_text(b"".join(resp.iter_content(chunk_size=pipeline.CHUNK_SIZE)), content_type)
            except CurlError as e:
                logger.error("Reading playlist %s failed: %r", target_url, e)
                return error_response(FetchFailure())
            finally:
                resp.close()

            rewritten = playlist.rewrite(
                text, target_url, pipeline.base_origin(proxy_request, config), PROXY_PATH
            )
            return Response(
                rewritten,
                status=200,
                headers=pipeline.with_cors(pipeline.playlist_headers(resp.headers)),
            )

        # 4. Binary stream
        headers = pipeline.with_cors(pipeline.passthrough_headers(resp.headers))
        if request.method == "HEAD":
            resp.close()
            return Response(status=resp.status_code, headers=headers)

        def generate():
            try:
                for chunk in resp.iter_content(chunk_size=pipeline.CHUNK_SIZE):
                    if chunk:
                        yield chunk
            except CurlError as e:
                logger.warning("Upstream %s broke off mid-body: %r", target_url, e)
                raise
            finally:
                resp.close()

        return Response(
            stream_with_context(generate()),
            status=resp.status_code,
            headers=headers,
            direct_passthrough=True,
        )

    return app


if __name__ == '__main__':
    configure_logging()
    config = ProxyConfig.from_env()
    warn_if_open(config)
    create_app(config).run(host='0.0.0.0', port=PORT)
