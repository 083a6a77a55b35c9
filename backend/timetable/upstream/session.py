# timetable/upstream/session.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from timetable.deps import Settings
from timetable.errors import ResolutionError
from timetable.schemas import Branch, Group, Lecture, Programme, SchoolContext, SchoolInfo
from timetable.services.cache import TTLCache
from timetable.services.logging import get_logger, log_kv
from timetable.upstream.client import UpstreamClient
from timetable.upstream.resolver import DateLike, ResourceResolver
from timetable.upstream.token import TokenManager

LOG = get_logger("timetable.session")


def _group_id(ref: Any) -> Any:
    if isinstance(ref, dict):
        return ref["id"]
    return getattr(ref, "id", ref)


class TimetableSession:
    """
    Everything one school's timetable needs: the cache, the token manager,
    the HTTP client and the resolver chain, wired together.

    Owned by the application's lifespan and used as an async context manager:
    entering starts the cache sweeper, exiting stops it, drops the cache and
    closes the HTTP client.

        async with TimetableSession(settings) as tt:
            programmes = await tt.get_basic_programmes()
    """

    def __init__(
        self,
        settings: Settings,
        school_code: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.settings = settings
        self.school_code = school_code or settings.school_code
        self.cache = cache if cache is not None else TTLCache(
            default_ttl=settings.cache_default_ttl_s,
            max_entries=settings.cache_max_entries,
            sweep_interval=settings.cache_sweep_interval_s,
        )
        self.http = httpx.AsyncClient(timeout=settings.request_timeout_s, transport=transport)
        self.tokens = TokenManager(self.cache, self.http, settings)
        self.client = UpstreamClient(self.http, self.tokens)
        self.resolver = ResourceResolver(self.cache, self.client, settings)
        self._context: Optional[SchoolContext] = None

    # ---- lifecycle ----
    async def __aenter__(self) -> "TimetableSession":
        self.cache.start()
        log_kv(LOG, logging.INFO, "session.start", school=self.school_code)
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.cache.stop()
        await self.http.aclose()
        self._context = None
        log_kv(LOG, logging.INFO, "session.closed", school=self.school_code)

    # ---- resolved school ----
    @property
    def context(self) -> SchoolContext:
        if self._context is None:
            raise ResolutionError("School info not initialized: call get_school_info() first")
        return self._context

    @property
    def server_url(self) -> Optional[str]:
        return self._context.server_url if self._context else None

    async def get_school_info(self) -> SchoolInfo:
        # goes through the cache every time so the per-step TTLs still apply
        info = await self.resolver.resolve_school_info(self.school_code)
        self._context = await self.resolver.resolve_context(self.school_code)
        return info

    async def _ensure_context(self) -> SchoolContext:
        await self.get_school_info()
        return self.context

    # ---- exposed lookups ----
    async def get_basic_programmes(self) -> List[Programme]:
        ctx = await self._ensure_context()
        return await self.resolver.list_programmes(ctx)

    async def get_branches_for_programme(self, programme_id: str, year: str) -> List[Branch]:
        ctx = await self._ensure_context()
        return await self.resolver.list_branches(ctx, str(programme_id), str(year))

    async def get_groups_for_branch(self, branch_id: str) -> List[Group]:
        ctx = await self._ensure_context()
        return await self.resolver.list_groups(ctx, str(branch_id))

    async def get_lectures_for_groups(
        self,
        group_refs: Iterable[Any],
        start: DateLike,
        end: DateLike,
    ) -> List[Lecture]:
        """`group_refs` may be ids, dicts with "id", or objects with `.id`."""
        ctx = await self._ensure_context()
        ids = [_group_id(g) for g in group_refs]
        return await self.resolver.list_lectures_for_groups(ctx, ids, start, end)

    # ---- cache management ----
    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
        self._context = None
        log_kv(LOG, logging.INFO, "session.cache_cleared", school=self.school_code)
