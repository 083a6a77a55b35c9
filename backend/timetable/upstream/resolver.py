# timetable/upstream/resolver.py
from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Union

from pydantic import TypeAdapter, ValidationError

from timetable.deps import Settings
from timetable.errors import ParseError, ResolutionError
from timetable.schemas import (
    Branch,
    Group,
    Lecture,
    Programme,
    SchoolContext,
    SchoolInfo,
    SchoolUrlResponse,
)
from timetable.services.cache import TTLCache
from timetable.services.logging import get_logger, log_kv
from timetable.upstream.client import UpstreamClient

LOG = get_logger("timetable.resolver")

DateLike = Union[date, datetime]


def _validate(model: Any, payload: Any, url: str) -> Any:
    """Turn an untyped upstream payload into typed records or raise ParseError."""
    try:
        return TypeAdapter(model).validate_python(payload)
    except ValidationError as e:
        raw = json.dumps(payload, ensure_ascii=False, default=str)
        log_kv(LOG, logging.ERROR, "resolver.shape_mismatch", url=url, errors=e.error_count())
        raise ParseError(f"Unexpected response shape from {url}: {e.error_count()} error(s)", raw_body=raw, url=url) from e


def iso_date(value: DateLike) -> str:
    """Calendar date only, no time of day: 2025-09-01."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def join_group_ids(group_ids: Iterable[Any]) -> str:
    """Sorted, de-duplicated, underscore-joined ids: the provider's groupsId format."""
    ids = sorted({str(g).strip() for g in group_ids if str(g).strip()}, key=lambda s: (len(s), s))
    return "_".join(ids)


def _secure_base_url(url: str) -> str:
    """Force https and a trailing slash so endpoint names can be appended."""
    url = url.strip()
    if url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    if not url.endswith("/"):
        url += "/"
    return url


class ResourceResolver:
    """
    The chain of dependent provider lookups, each cached under a readable
    composite key with its own TTL:

        school code -> server url -> school info (canonical code)
            -> programmes -> branches(programme, year) -> groups(branch)
            -> lectures(groups, date range)

    Failures propagate untouched and nothing is cached for them.
    """

    def __init__(self, cache: TTLCache, client: UpstreamClient, settings: Settings):
        self.cache = cache
        self.client = client
        self.settings = settings

    def _params(self, school_code: str, **extra: Any) -> dict:
        return {"schoolCode": school_code, "language": self.settings.language, **extra}

    @staticmethod
    def _require(ctx: SchoolContext | None) -> SchoolContext:
        if ctx is None or not ctx.server_url or not ctx.school_code:
            raise ResolutionError("School info not initialized: resolve the school before dependent lookups")
        return ctx

    # ---- 1) school code -> server url ----
    async def resolve_server_url(self, school_code: str) -> str:
        async def produce() -> str:
            url = f"{self.settings.api_url}url"
            payload = await self.client.authenticated_get(url, self._params(school_code))
            server = _validate(SchoolUrlResponse, payload, url).server
            secure = _secure_base_url(server)
            log_kv(LOG, logging.INFO, "resolver.server_url", school=school_code, server=secure)
            return secure

        return await self.cache.request(
            produce, key=f"school_url:{school_code}", ttl=self.settings.ttl_server_url_s
        )

    # ---- 2) server url -> canonical school metadata ----
    async def resolve_school_info(self, school_code: str) -> SchoolInfo:
        async def produce() -> SchoolInfo:
            server_url = await self.resolve_server_url(school_code)
            url = f"{server_url}schoolCode"
            payload = await self.client.authenticated_get(url, self._params(school_code))
            info = _validate(SchoolInfo, payload, url)
            log_kv(LOG, logging.INFO, "resolver.school_info", school=school_code, canonical=info.school_code)
            return info

        return await self.cache.request(
            produce, key=f"school_info:{school_code}", ttl=self.settings.ttl_school_info_s
        )

    async def resolve_context(self, school_code: str) -> SchoolContext:
        """Both prerequisite steps, folded into the context later calls need."""
        info = await self.resolve_school_info(school_code)
        server_url = await self.resolve_server_url(school_code)
        return self._require(SchoolContext(
            human_code=school_code,
            server_url=server_url,
            school_code=info.school_code,
        ))

    # ---- 3) fan-out lookups ----
    async def list_programmes(self, ctx: SchoolContext) -> List[Programme]:
        ctx = self._require(ctx)

        async def produce() -> List[Programme]:
            url = f"{ctx.server_url}basicProgrammeAll"
            payload = await self.client.authenticated_get(url, self._params(ctx.school_code))
            result = _validate(List[Programme], payload, url)
            log_kv(LOG, logging.INFO, "resolver.programmes", count=len(result))
            return result

        return await self.cache.request(
            produce, key=f"programmes:{ctx.school_code}", ttl=self.settings.ttl_programmes_s
        )

    async def list_branches(self, ctx: SchoolContext, programme_id: str, year: str) -> List[Branch]:
        ctx = self._require(ctx)

        async def produce() -> List[Branch]:
            url = f"{ctx.server_url}branchAllForProgrmmeYear"
            params = self._params(ctx.school_code, programmeId=programme_id, year=year)
            payload = await self.client.authenticated_get(url, params)
            result = _validate(List[Branch], payload, url)
            log_kv(LOG, logging.INFO, "resolver.branches", programme=programme_id, year=year, count=len(result))
            return result

        return await self.cache.request(
            produce,
            key=f"branches:{ctx.school_code}:{programme_id}:{year}",
            ttl=self.settings.ttl_branches_s,
        )

    async def list_groups(self, ctx: SchoolContext, branch_id: str) -> List[Group]:
        ctx = self._require(ctx)

        async def produce() -> List[Group]:
            url = f"{ctx.server_url}groupAllForBranch"
            payload = await self.client.authenticated_get(url, self._params(ctx.school_code, branchId=branch_id))
            result = _validate(List[Group], payload, url)
            log_kv(LOG, logging.INFO, "resolver.groups", branch=branch_id, count=len(result))
            return result

        return await self.cache.request(
            produce, key=f"groups:{ctx.school_code}:{branch_id}", ttl=self.settings.ttl_groups_s
        )

    # ---- 4) lectures for a whole window, one call ----
    async def list_lectures_for_groups(
        self,
        ctx: SchoolContext,
        group_ids: Iterable[Any],
        start: DateLike,
        end: DateLike,
    ) -> List[Lecture]:
        ctx = self._require(ctx)
        groups_id = join_group_ids(group_ids)
        date_from, date_to = iso_date(start), iso_date(end)

        async def produce() -> List[Lecture]:
            url = f"{ctx.server_url}scheduleByGroups"
            params = self._params(ctx.school_code, dateFrom=date_from, dateTo=date_to, groupsId=groups_id)
            payload = await self.client.authenticated_get(url, params)
            result = _validate(List[Lecture], payload, url)
            log_kv(
                LOG, logging.INFO, "resolver.lectures",
                groups=groups_id, date_from=date_from, date_to=date_to, count=len(result),
            )
            return result

        return await self.cache.request(
            produce,
            key=f"lectures:{ctx.school_code}:{groups_id}:{date_from}:{date_to}",
            ttl=self.settings.ttl_lectures_s,
        )
