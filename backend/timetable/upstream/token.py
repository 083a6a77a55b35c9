# timetable/upstream/token.py
from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from timetable.deps import Settings
from timetable.errors import AuthenticationError
from timetable.schemas import TokenResponse
from timetable.services.cache import TTLCache
from timetable.services.logging import get_logger, log_kv

LOG = get_logger("timetable.token")

TOKEN_CACHE_KEY = "auth_token"


class TokenManager:
    """
    Hands out the provider's bearer token.

    The token lives in the shared cache under TOKEN_CACHE_KEY with a TTL a
    little shorter than the provider's real validity window, so a cached
    token is never presented after it has actually expired. When the entry
    is gone (expired, evicted, invalidated) the next caller logs in again.
    """

    def __init__(self, cache: TTLCache, http: httpx.AsyncClient, settings: Settings):
        self.cache = cache
        self.http = http
        self.settings = settings

    async def get_token(self) -> str:
        return await self.cache.request(
            self._fetch_token,
            key=TOKEN_CACHE_KEY,
            ttl=self.settings.token_ttl_s,
        )

    def invalidate(self) -> bool:
        return self.cache.delete(TOKEN_CACHE_KEY)

    async def _fetch_token(self) -> str:
        # ConfigurationError propagates as-is: missing creds aren't an auth failure
        username, password = self.settings.credentials()
        url = f"{self.settings.api_url}login"

        log_kv(LOG, logging.INFO, "token.fetch", user=username)
        try:
            resp = await self.http.get(url, auth=httpx.BasicAuth(username, password))
        except httpx.HTTPError as e:
            log_kv(LOG, logging.ERROR, "token.unreachable", error=e.__class__.__name__)
            raise AuthenticationError(f"Token endpoint unreachable: {e.__class__.__name__}") from e

        if not resp.is_success:
            log_kv(LOG, logging.ERROR, "token.rejected", status=resp.status_code)
            raise AuthenticationError(
                f"Failed to fetch token: HTTP {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            parsed = TokenResponse.model_validate_json(resp.content)
        except ValidationError as e:
            log_kv(LOG, logging.ERROR, "token.unparseable", status=resp.status_code)
            raise AuthenticationError(
                "Token endpoint returned an unreadable response",
                status=resp.status_code,
                body=resp.text,
            ) from e

        log_kv(LOG, logging.INFO, "token.ok", ttl_s=self.settings.token_ttl_s)
        return parsed.token
