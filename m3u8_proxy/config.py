import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

logger = logging.getLogger(__name__)

# --- CONFIGURATION ---
DEFAULT_USER_AGENT = "m3u8-proxy"
DEFAULT_TIMEOUT = 30.0


def parse_allowed_hosts(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma separated ALLOWED_HOSTS value into hostnames."""
    if not raw:
        return frozenset()
    return frozenset(h.strip().lower() for h in raw.split(",") if h.strip())


@dataclass(frozen=True)
class AccessPolicy:
    """Host allow-list and shared token. Empty list / no token disables the check."""

    allowed_hosts: FrozenSet[str] = field(default_factory=frozenset)
    auth_token: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "AccessPolicy":
        return cls(
            allowed_hosts=parse_allowed_hosts(environ.get("ALLOWED_HOSTS")),
            auth_token=environ.get("AUTH_TOKEN") or None,
        )


@dataclass(frozen=True)
class ProxyConfig:
    policy: AccessPolicy = field(default_factory=AccessPolicy)
    public_base_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "ProxyConfig":
        public_base_url = environ.get("PUBLIC_BASE_URL") or None
        if public_base_url:
            public_base_url = public_base_url.rstrip("/")
        return cls(
            policy=AccessPolicy.from_env(environ),
            public_base_url=public_base_url,
            user_agent=environ.get("PROXY_USER_AGENT") or DEFAULT_USER_AGENT,
            timeout=float(environ.get("UPSTREAM_TIMEOUT") or DEFAULT_TIMEOUT),
        )


def configure_logging(environ: Mapping[str, str] = os.environ) -> None:
    level = environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def warn_if_open(config: ProxyConfig) -> None:
    """Both checks fail open; say so loudly when either is missing."""
    policy = config.policy
    if not policy.allowed_hosts:
        logger.warning("ALLOWED_HOSTS is not set: any upstream host will be proxied")
    if not policy.auth_token:
        logger.warning("AUTH_TOKEN is not set: requests are not authenticated")
    if not config.public_base_url:
        logger.info("PUBLIC_BASE_URL is not set: rewritten links use the request's Host header")
