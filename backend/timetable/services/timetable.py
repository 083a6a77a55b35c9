# timetable/services/timetable.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple

from timetable.schemas import GroupWithBranch, Lecture
from timetable.services.logging import get_logger, log_kv
from timetable.upstream.session import TimetableSession

LOG = get_logger("timetable.assembly")

SEPTEMBER = 9


@dataclass
class TimetableData:
    all_groups: List[GroupWithBranch] = field(default_factory=list)
    lectures: List[Lecture] = field(default_factory=list)
    selected_branches: List[str] = field(default_factory=list)


def academic_year_window(today: Optional[date] = None) -> Tuple[date, date]:
    """Sep 1 .. Aug 31 of the academic year `today` falls in."""
    today = today or date.today()
    start_year = today.year if today.month >= SEPTEMBER else today.year - 1
    return date(start_year, 9, 1), date(start_year + 1, 8, 31)


def parse_branches_param(branches: Optional[str]) -> Optional[List[str]]:
    """None means "every branch"; otherwise the explicit comma-separated ids."""
    if not branches or branches.strip() == "all":
        return None
    return [b.strip() for b in branches.split(",") if b.strip()]


async def fetch_timetable_data(
    session: TimetableSession,
    programme_id: str,
    year: str,
    branches: Optional[str] = "all",
    today: Optional[date] = None,
) -> TimetableData:
    """
    Resolve programme/year/branches into the groups they contain and the
    lectures of those groups for the current academic year.
    """
    selected = parse_branches_param(branches)
    if selected is None:
        selected = [b.id for b in await session.get_branches_for_programme(programme_id, year)]

    per_branch = await asyncio.gather(*(session.get_groups_for_branch(b) for b in selected))

    all_groups: List[GroupWithBranch] = []
    for branch_id, groups in zip(selected, per_branch):
        all_groups.extend(GroupWithBranch(id=g.id, name=g.name, branch_id=branch_id) for g in groups)

    if not all_groups:
        log_kv(LOG, logging.INFO, "timetable.no_groups", programme=programme_id, year=year)
        return TimetableData(all_groups=[], lectures=[], selected_branches=selected)

    start, end = academic_year_window(today)
    lectures = await session.get_lectures_for_groups(all_groups, start, end)

    log_kv(
        LOG, logging.INFO, "timetable.assembled",
        programme=programme_id, year=year, branches=len(selected),
        groups=len(all_groups), lectures=len(lectures),
    )
    return TimetableData(all_groups=all_groups, lectures=lectures, selected_branches=selected)
