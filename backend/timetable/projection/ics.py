"""
iCalendar (.ics) export of a filtered timetable.

The provider's times are local to Ljubljana; the calendar carries a
VTIMEZONE for Europe/Ljubljana so clients place events correctly.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from timetable.schemas import Lecture
from timetable.services.logging import get_logger, log_kv

LOG = get_logger("timetable.ics")

TZID = "Europe/Ljubljana"
UID_DOMAIN = "feri-timetable-plus-plus"

_VTIMEZONE = [
    "BEGIN:VTIMEZONE",
    f"TZID:{TZID}",
    "BEGIN:DAYLIGHT",
    "TZOFFSETFROM:+0100",
    "TZOFFSETTO:+0200",
    "TZNAME:CEST",
    "DTSTART:19700329T020000",
    "RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU",
    "END:DAYLIGHT",
    "BEGIN:STANDARD",
    "TZOFFSETFROM:+0200",
    "TZOFFSETTO:+0100",
    "TZNAME:CET",
    "DTSTART:19701025T030000",
    "RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU",
    "END:STANDARD",
    "END:VTIMEZONE",
]


def _ics_escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\r\n", "\\n").replace("\n", "\\n")
    )


def _fold(line: str, limit: int = 75) -> str:
    """Fold a content line at `limit` octets; continuation lines start with a space."""
    if len(line.encode("utf-8")) <= limit:
        return line
    parts: List[str] = []
    current, size = "", 0
    for ch in line:
        width = len(ch.encode("utf-8"))
        # the leading space of a continuation line counts against the limit
        budget = limit - 1 if parts else limit
        if size + width > budget:
            parts.append(current)
            current, size = "", 0
        current += ch
        size += width
    parts.append(current)
    return "\r\n ".join(parts)


def parse_lecture_time(value: str) -> Optional[datetime]:
    """Parse an upstream timestamp; aware values are moved to Ljubljana time."""
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(ZoneInfo(TZID))
    return dt


def _local(dt: datetime) -> str:
    return dt.strftime("%Y%m%dT%H%M%S")


def _joined(refs) -> str:
    return ", ".join(r.name for r in refs or [] if r.name)


def generate_ics(lectures: Iterable[Lecture], programme_id: str, year: str) -> str:
    """
    Build the calendar text. Lectures are written in start-time order;
    ones with unparseable times are skipped.
    """
    timed = []
    skipped = 0
    for lecture in lectures:
        start = parse_lecture_time(lecture.start_time)
        end = parse_lecture_time(lecture.end_time)
        if start is None or end is None:
            skipped += 1
            continue
        timed.append((start, end, lecture))
    timed.sort(key=lambda t: t[0].replace(tzinfo=None))

    lines: List[str] = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//FERI Timetable++//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:FERI Timetable - {programme_id} Year {year}",
        f"X-WR-TIMEZONE:{TZID}",
        *_VTIMEZONE,
    ]

    dtstamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    for start, end, lecture in timed:
        course = (lecture.course or "Empty").strip() or "Empty"
        execution_type = (lecture.execution_type or "").strip()
        summary = f"{course} - {execution_type}" if execution_type else course

        groups = _joined(lecture.groups)
        lecturers = _joined(lecture.lecturers)
        rooms = _joined(lecture.rooms)
        description = "\n".join(
            part for part in (
                groups and f"Groups: {groups}",
                lecturers and f"Lecturers: {lecturers}",
                rooms and f"Rooms: {rooms}",
            ) if part
        )

        lines.append("BEGIN:VEVENT")
        lines.append(f"UID:{lecture.id}-{lecture.start_time}-{lecture.end_time}@{UID_DOMAIN}")
        lines.append(f"DTSTAMP:{dtstamp}")
        lines.append(f"DTSTART;TZID={TZID}:{_local(start)}")
        lines.append(f"DTEND;TZID={TZID}:{_local(end)}")
        lines.append(f"SUMMARY:{_ics_escape(summary)}")
        if description:
            lines.append(f"DESCRIPTION:{_ics_escape(description)}")
        if rooms:
            lines.append(f"LOCATION:{_ics_escape(rooms)}")
        lines.append("STATUS:CONFIRMED")
        lines.append("SEQUENCE:0")
        lines.append("END:VEVENT")

    lines.append("END:VCALENDAR")
    log_kv(LOG, logging.INFO, "ics.generated", events=len(timed), skipped=skipped)

    # CRLF line endings, long lines folded
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"
