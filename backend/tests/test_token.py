"""
Token manager: login once, reuse until the buffered TTL runs out, and
fail loudly (never retry) when credentials are missing or rejected.
"""

import asyncio

import httpx
import pytest

from conftest import API_URL, respond
from timetable.deps import Settings
from timetable.errors import AuthenticationError, ConfigurationError
from timetable.services.cache import TTLCache
from timetable.upstream.token import TOKEN_CACHE_KEY, TokenManager


def _manager(settings, provider, clock=None):
    cache = TTLCache(clock=clock) if clock else TTLCache()
    http = httpx.AsyncClient(transport=provider.transport)
    return TokenManager(cache, http, settings), cache, http


def _run(manager, http, times=1):
    async def scenario():
        try:
            return [await manager.get_token() for _ in range(times)]
        finally:
            await http.aclose()
    return asyncio.run(scenario())


def test_sequential_calls_reuse_one_login(settings, provider):
    manager, cache, http = _manager(settings, provider)
    tokens = _run(manager, http, times=3)

    assert tokens == ["tok-1", "tok-1", "tok-1"]
    assert provider.logins == 1
    assert cache.has(TOKEN_CACHE_KEY)


def test_token_ttl_is_shorter_than_provider_lifetime(settings, provider, clock):
    manager, cache, http = _manager(settings, provider, clock)
    _run(manager, http)

    entry = cache.store[TOKEN_CACHE_KEY]
    ttl = entry.expires_at - entry.stored_at
    assert ttl == settings.token_lifetime_s - settings.token_expiry_buffer_s
    assert ttl < settings.token_lifetime_s


def test_expired_token_is_fetched_again(settings, provider, clock):
    manager, cache, http = _manager(settings, provider, clock)

    async def scenario():
        first = await manager.get_token()
        clock.advance(settings.token_ttl_s + 1)
        second = await manager.get_token()
        await http.aclose()
        return first, second

    assert asyncio.run(scenario()) == ("tok-1", "tok-2")
    assert provider.logins == 2


def test_login_uses_basic_auth_against_login_endpoint(settings, provider):
    manager, _, http = _manager(settings, provider)
    _run(manager, http)

    (login,) = provider.endpoint_calls("login")
    assert str(login.url) == f"{API_URL}login"
    assert login.headers["Authorization"].startswith("Basic ")


def test_missing_username_names_the_variable(provider, monkeypatch):
    monkeypatch.delenv("WTT_USERNAME", raising=False)
    monkeypatch.setenv("WTT_PASSWORD", "secret")
    manager, _, http = _manager(Settings(api_url=API_URL), provider)

    with pytest.raises(ConfigurationError) as exc:
        _run(manager, http)
    assert "WTT_USERNAME" in str(exc.value)
    assert exc.value.variable == "WTT_USERNAME"
    assert provider.calls == []


def test_missing_password_names_the_variable(provider, monkeypatch):
    monkeypatch.setenv("WTT_USERNAME", "student")
    monkeypatch.delenv("WTT_PASSWORD", raising=False)
    manager, _, http = _manager(Settings(api_url=API_URL), provider)

    with pytest.raises(ConfigurationError, match="WTT_PASSWORD"):
        _run(manager, http)


def test_credentials_are_read_from_env_at_call_time(provider, monkeypatch):
    monkeypatch.setenv("WTT_USERNAME", "student")
    monkeypatch.setenv("WTT_PASSWORD", "secret")
    manager, _, http = _manager(Settings(api_url=API_URL), provider)
    assert _run(manager, http) == ["tok-1"]


def test_rejected_credentials_raise_and_cache_nothing(settings, provider):
    provider.overrides["login"] = respond(401, text="nope")
    manager, cache, http = _manager(settings, provider)

    with pytest.raises(AuthenticationError) as exc:
        _run(manager, http)
    assert exc.value.status == 401
    assert exc.value.body == "nope"
    assert not cache.has(TOKEN_CACHE_KEY)
    assert len(provider.endpoint_calls("login")) == 1  # no retry


def test_unparseable_login_response(settings, provider):
    provider.overrides["login"] = respond(200, text="<html>maintenance</html>")
    manager, _, http = _manager(settings, provider)

    with pytest.raises(AuthenticationError, match="unreadable"):
        _run(manager, http)


def test_login_response_without_token_field(settings, provider):
    provider.overrides["login"] = respond(200, body={"jwt": "x"})
    manager, _, http = _manager(settings, provider)

    with pytest.raises(AuthenticationError):
        _run(manager, http)


def test_unreachable_login_endpoint(settings, provider):
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    provider.overrides["login"] = boom
    manager, _, http = _manager(settings, provider)

    with pytest.raises(AuthenticationError, match="unreachable"):
        _run(manager, http)


def test_buffer_must_be_inside_lifetime():
    with pytest.raises(ConfigurationError):
        Settings(token_lifetime_s=60, token_expiry_buffer_s=60)
    with pytest.raises(ConfigurationError):
        Settings(token_expiry_buffer_s=0)
