# timetable/routers/timetable.py
from __future__ import annotations

import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from timetable.deps import get_timetable
from timetable.projection.filtering import (
    build_course_group_mapping,
    convert_lectures_to_events,
    filter_lectures_by_groups,
)
from timetable.projection.ics import generate_ics
from timetable.projection.selection import parse_groups_param
from timetable.schemas import Branch, CacheStats, Group, Programme, SchoolInfo, TimetableResponse
from timetable.services.logging import get_logger, log_kv
from timetable.services.timetable import fetch_timetable_data
from timetable.upstream.session import TimetableSession

router = APIRouter(prefix="/api", tags=["timetable"])
LOG = get_logger("timetable.api")

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _missing_params_error(message: str = "Programme and year are required") -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=400)


# ---------- Lookups ----------
@router.get("/school", response_model=SchoolInfo)
async def school(tt: TimetableSession = Depends(get_timetable)):
    return await tt.get_school_info()


@router.get("/programmes", response_model=List[Programme])
async def programmes(tt: TimetableSession = Depends(get_timetable)):
    return await tt.get_basic_programmes()


@router.get("/programmes/{programme_id}/branches", response_model=List[Branch])
async def branches(programme_id: str, year: Optional[str] = None, tt: TimetableSession = Depends(get_timetable)):
    if not year:
        return _missing_params_error("Year is required")
    return await tt.get_branches_for_programme(programme_id, year)


@router.get("/branches/{branch_id}/groups", response_model=List[Group])
async def groups(branch_id: str, tt: TimetableSession = Depends(get_timetable)):
    return await tt.get_groups_for_branch(branch_id)


# ---------- Timetable (JSON) ----------
@router.get("/timetable", response_model=TimetableResponse)
async def timetable(
    programme: Optional[str] = None,
    year: Optional[str] = None,
    branches: str = "all",
    groups: Optional[str] = None,
    tt: TimetableSession = Depends(get_timetable),
):
    """
    Calendar events for a programme/year. Courses missing from the `groups`
    selection are shown: a first visit with no choices yet sees everything.
    """
    if not programme or not year:
        return _missing_params_error()

    data = await fetch_timetable_data(tt, programme, year, branches)
    course_groups = build_course_group_mapping(data.lectures, data.all_groups)
    selected = parse_groups_param(groups)
    filtered = filter_lectures_by_groups(data.lectures, selected, absent="include")
    events = convert_lectures_to_events(filtered)

    log_kv(
        LOG, logging.INFO, "timetable.events",
        programme=programme, year=year, events=len(events), lectures=len(data.lectures),
    )
    return TimetableResponse(success=True, events=events, course_groups=course_groups)


# ---------- Timetable (.ics download) ----------
@router.get("/timetable.ics")
async def timetable_ics(
    programme: Optional[str] = None,
    year: Optional[str] = None,
    branches: str = "all",
    groups: Optional[str] = None,
    tt: TimetableSession = Depends(get_timetable),
):
    """
    Calendar file for a programme/year. With a `groups` selection the file
    holds only what was picked (courses missing from it are left out);
    without one it holds everything.
    """
    if not programme or not year:
        return _missing_params_error()

    data = await fetch_timetable_data(tt, programme, year, branches)
    lectures = data.lectures
    selected = parse_groups_param(groups)
    if selected:
        lectures = filter_lectures_by_groups(lectures, selected, absent="exclude")

    body = generate_ics(lectures, programme, year)
    filename = _FILENAME_UNSAFE.sub("_", f"timetable-{programme}-{year}.ics")
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------- Cache ----------
@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(tt: TimetableSession = Depends(get_timetable)):
    return tt.cache_stats()


@router.delete("/cache")
async def clear_cache(tt: TimetableSession = Depends(get_timetable)):
    tt.clear_cache()
    return {"ok": True}
