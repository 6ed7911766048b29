import pytest

from m3u8_proxy.config import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    AccessPolicy,
    ProxyConfig,
    parse_allowed_hosts,
)


def test_parse_allowed_hosts():
    assert parse_allowed_hosts(None) == frozenset()
    assert parse_allowed_hosts("") == frozenset()
    assert parse_allowed_hosts(" cdn.example.com, ,Other.Example.com,") == frozenset(
        {"cdn.example.com", "other.example.com"}
    )


def test_policy_from_empty_env_is_open():
    policy = AccessPolicy.from_env({})
    assert policy.allowed_hosts == frozenset()
    assert policy.auth_token is None


def test_empty_token_counts_as_unset():
    assert AccessPolicy.from_env({"AUTH_TOKEN": ""}).auth_token is None


def test_config_from_env():
    config = ProxyConfig.from_env({
        "ALLOWED_HOSTS": "cdn.example.com",
        "AUTH_TOKEN": "s3cret",
        "PUBLIC_BASE_URL": "https://proxy.example.org/",
        "PROXY_USER_AGENT": "my-proxy",
        "UPSTREAM_TIMEOUT": "12.5",
    })
    assert config.policy == AccessPolicy(frozenset({"cdn.example.com"}), "s3cret")
    assert config.public_base_url == "https://proxy.example.org"
    assert config.user_agent == "my-proxy"
    assert config.timeout == 12.5


def test_config_defaults():
    config = ProxyConfig.from_env({})
    assert config.public_base_url is None
    assert config.user_agent == DEFAULT_USER_AGENT
    assert config.timeout == DEFAULT_TIMEOUT


def test_bad_timeout_fails_at_startup():
    with pytest.raises(ValueError):
        ProxyConfig.from_env({"UPSTREAM_TIMEOUT": "soon"})


def test_config_is_immutable():
    config = ProxyConfig()
    with pytest.raises(AttributeError):
        config.timeout = 1
