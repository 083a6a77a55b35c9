# timetable/upstream/client.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from timetable.errors import HttpError, ParseError, UpstreamUnavailable
from timetable.services.logging import get_logger, log_kv
from timetable.upstream.token import TokenManager

LOG = get_logger("timetable.upstream")


class UpstreamClient:
    """
    Authenticated GETs against the provider. One call = one HTTP attempt;
    nothing here retries.
    """

    def __init__(self, http: httpx.AsyncClient, tokens: TokenManager):
        self.http = http
        self.tokens = tokens

    async def authenticated_get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        token = await self.tokens.get_token()

        t0 = time.perf_counter()
        try:
            resp = await self.http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as e:
            log_kv(LOG, logging.ERROR, "upstream.unavailable", url=url, error=e.__class__.__name__)
            raise UpstreamUnavailable(f"Upstream unreachable: {e.__class__.__name__}", url=url) from e

        duration_ms = int((time.perf_counter() - t0) * 1000)
        log_kv(LOG, logging.INFO, "upstream.response", url=url, status=resp.status_code, duration_ms=duration_ms)

        if not resp.is_success:
            if resp.status_code == 401:
                # stale or revoked token: make the next call log in again
                self.tokens.invalidate()
            log_kv(LOG, logging.ERROR, "upstream.http_error", url=url, status=resp.status_code, body=resp.text[:200])
            raise HttpError(resp.status_code, resp.text, url=url)

        try:
            return resp.json()
        except ValueError as e:
            log_kv(LOG, logging.ERROR, "upstream.bad_json", url=url, body=resp.text[:200])
            raise ParseError(f"Invalid JSON response from {url}", raw_body=resp.text, url=url) from e
