# timetable/upstream/__init__.py
from __future__ import annotations

from timetable.upstream.client import UpstreamClient
from timetable.upstream.resolver import ResourceResolver, iso_date, join_group_ids
from timetable.upstream.session import TimetableSession
from timetable.upstream.token import TOKEN_CACHE_KEY, TokenManager

__all__ = [
    "TOKEN_CACHE_KEY",
    "ResourceResolver",
    "TimetableSession",
    "TokenManager",
    "UpstreamClient",
    "iso_date",
    "join_group_ids",
]
