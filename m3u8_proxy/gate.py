"""Request gate: everything that must be decided before we touch the network."""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlsplit

from m3u8_proxy.config import AccessPolicy
from m3u8_proxy.playlist import Unresolvable, validate_target

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    status = 500
    message = "Proxy error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)

    @property
    def body(self) -> str:
        return str(self)


class MissingParameter(ProxyError):
    status = 400
    message = "Missing url parameter"


class InvalidURL(ProxyError):
    status = 400
    message = "Invalid url parameter"


class HostNotAllowed(ProxyError):
    status = 403
    message = "Host not allowed. Configure the ALLOWED_HOSTS environment variable."


class Unauthorized(ProxyError):
    status = 401
    message = "Unauthorized: missing or invalid token"


class UpstreamError(ProxyError):
    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Upstream responded {status}")


class FetchFailure(ProxyError):
    status = 502
    message = "Bad Gateway"


@dataclass(frozen=True)
class ProxyRequest:
    """The parts of an inbound request the proxy cares about."""

    method: str
    target_url: Optional[str] = None
    range: Optional[str] = None
    header_token: Optional[str] = None
    query_token: Optional[str] = None
    user_agent: Optional[str] = None
    forwarded_proto: Optional[str] = None
    host: Optional[str] = None


@dataclass(frozen=True)
class Allowed:
    target_url: str
    hostname: str


@dataclass(frozen=True)
class Preflight:
    status: int = 204


@dataclass(frozen=True)
class Rejected:
    error: ProxyError

    @property
    def status(self) -> int:
        return self.error.status


Decision = Union[Allowed, Preflight, Rejected]


def _token_matches(supplied: Optional[str], expected: str) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def authorize(request: ProxyRequest, policy: AccessPolicy) -> Decision:
    if request.method.upper() == "OPTIONS":
        return Preflight()

    if not request.target_url:
        return Rejected(MissingParameter())

    checked = validate_target(request.target_url)
    if isinstance(checked, Unresolvable):
        logger.info("Rejecting invalid url %r: %s", request.target_url, checked.reason)
        return Rejected(InvalidURL())

    hostname = urlsplit(checked.url).hostname

    if policy.allowed_hosts and hostname not in policy.allowed_hosts:
        logger.info("Rejecting host %s: not in ALLOWED_HOSTS", hostname)
        return Rejected(HostNotAllowed())

    if policy.auth_token:
        token = request.header_token or request.query_token
        if not _token_matches(token, policy.auth_token):
            logger.info("Rejecting request for %s: bad or missing token", hostname)
            return Rejected(Unauthorized())

    return Allowed(target_url=checked.url, hostname=hostname)
