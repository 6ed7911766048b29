# api/proxy.py
# Serverless Python using FastAPI + httpx
# Usage: GET /api/proxy?url=<encodedAbsoluteUrl>[&token=<token>]
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from m3u8_proxy import pipeline, playlist
from m3u8_proxy.config import ProxyConfig, configure_logging, warn_if_open
from m3u8_proxy.gate import (
    FetchFailure,
    Preflight,
    ProxyError,
    ProxyRequest,
    Rejected,
    UpstreamError,
    authorize,
)
from m3u8_proxy.pipeline import Classification

PROXY_PATH = "/api/proxy"

logger = logging.getLogger(__name__)


def build_proxy_request(req: Request) -> ProxyRequest:
    urls = req.query_params.getlist("url")
    return ProxyRequest(
        method=req.method,
        target_url=urls[0] if urls else None,
        range=req.headers.get("range"),
        header_token=req.headers.get("x-proxy-token"),
        query_token=req.query_params.get("token"),
        user_agent=req.headers.get("user-agent"),
        forwarded_proto=req.headers.get("x-forwarded-proto"),
        host=req.headers.get("host") or req.url.netloc,
    )


def error_response(error: ProxyError) -> Response:
    return PlainTextResponse(error.body, status_code=error.status, headers=pipeline.with_cors())


def create_app(
    config: Optional[ProxyConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    lifespan=None,
) -> FastAPI:
    config = config or ProxyConfig.from_env()
    app = FastAPI(lifespan=lifespan)

    @app.api_route(PROXY_PATH, methods=["GET", "HEAD", "OPTIONS"])
    async def proxy(req: Request):
        proxy_request = build_proxy_request(req)

        # Nothing below this point runs unless the gate says so
        decision = authorize(proxy_request, config.policy)
        if isinstance(decision, Preflight):
            return Response(status_code=decision.status, headers=pipeline.with_cors())
        if isinstance(decision, Rejected):
            return error_response(decision.error)

        target_url = decision.target_url
        client = httpx.AsyncClient(follow_redirects=True, timeout=config.timeout, transport=transport)
        try:
            upstream_req = client.build_request(
                "GET", target_url, headers=pipeline.upstream_headers(proxy_request, config)
            )
            upstream = await client.send(upstream_req, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await client.aclose()
            logger.error("Fetching %s failed: %r", target_url, e)
            return error_response(FetchFailure())

        async def release():
            await upstream.aclose()
            await client.aclose()

        if not pipeline.is_success(upstream.status_code):
            await release()
            logger.warning("Upstream %s responded %d", target_url, upstream.status_code)
            return error_response(UpstreamError(upstream.status_code))

        content_type = upstream.headers.get("content-type")
        if pipeline.classify(content_type, target_url) is Classification.PLAYLIST:
            try:
                await upstream.aread()
                text = upstream.text
            except httpx.HTTPError as e:
                logger.error("Reading playlist %s failed: %r", target_url, e)
                return error_response(FetchFailure())
            finally:
                await release()

            rewritten = playlist.rewrite(
                text, target_url, pipeline.base_origin(proxy_request, config), PROXY_PATH
            )
            return Response(
                content=rewritten,
                status_code=200,
                headers=pipeline.with_cors(pipeline.playlist_headers(upstream.headers)),
            )

        # segments, keys and anything else: bytes as they come
        headers = pipeline.with_cors(pipeline.passthrough_headers(upstream.headers))
        if req.method == "HEAD":
            await release()
            return Response(status_code=upstream.status_code, headers=headers)

        async def body():
            try:
                async for chunk in upstream.aiter_raw(pipeline.CHUNK_SIZE):
                    yield chunk
            except httpx.HTTPError as e:
                logger.warning("Upstream %s broke off mid-body: %r", target_url, e)
                raise
            finally:
                await release()

        return StreamingResponse(body(), status_code=upstream.status_code, headers=headers)

    return app


_config = ProxyConfig.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # runs when a server starts the app, not on import
    configure_logging()
    warn_if_open(_config)
    yield


app = create_app(_config, lifespan=lifespan)
