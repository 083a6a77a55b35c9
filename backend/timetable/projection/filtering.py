from typing import Iterable, List, Literal, Optional, Sequence

from timetable.schemas import (
    CalendarEvent,
    CourseGroups,
    EventProps,
    GroupWithBranch,
    Lecture,
    NamedRef,
    SelectedGroups,
)

# What to do with a lecture whose course has no key in the selection:
#   "include" -> show it (first visit, nothing chosen yet)
#   "exclude" -> hide it (explicit selection, only what was picked)
AbsentCourse = Literal["include", "exclude"]

_SATURATION = 65
_LIGHTNESS = 50


def _names(refs: Optional[Sequence[NamedRef]]) -> List[str]:
    return [r.name for r in refs or [] if r.name]


def build_course_group_mapping(lectures: Iterable[Lecture], allowed_groups: Iterable[GroupWithBranch]) -> CourseGroups:
    """
    course -> sorted distinct group names seen on that course's lectures,
    limited to groups that belong to the selected branches.
    """
    allowed = {g.name for g in allowed_groups}
    course_groups: dict = {}
    for lecture in lectures:
        if not lecture.course:
            continue
        names = course_groups.setdefault(lecture.course, set())
        names.update(n for n in _names(lecture.groups) if n in allowed)
    return {course: sorted(names) for course, names in course_groups.items()}


def get_default_selected_groups(course_groups: CourseGroups) -> SelectedGroups:
    """Everything selected: a copy of the index."""
    return {course: list(groups) for course, groups in course_groups.items()}


def filter_lectures_by_groups(
    lectures: Iterable[Lecture],
    selected: SelectedGroups,
    absent: AbsentCourse = "include",
) -> List[Lecture]:
    """
    Keep the lectures the user's selection asks for.

    - course not in `selected`: decided by `absent`
    - course mapped to []: none of its lectures
    - otherwise: lectures sharing at least one group name with the selection
    """
    if absent not in ("include", "exclude"):
        raise ValueError(f"absent must be 'include' or 'exclude', got {absent!r}")

    out: List[Lecture] = []
    for lecture in lectures:
        wanted = selected.get(lecture.course or "")
        if wanted is None:
            if absent == "include":
                out.append(lecture)
            continue
        if not wanted:
            continue
        wanted_set = set(wanted)
        if any(name in wanted_set for name in _names(lecture.groups)):
            out.append(lecture)
    return out


def _string_hash(text: str) -> int:
    # 32-bit signed rolling hash (h * 31 + c): stable across processes,
    # unlike the builtin hash() which is salted per interpreter run
    h = 0
    for ch in text:
        h = (ord(ch) + ((h << 5) - h)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def course_color(course: str) -> str:
    hue = abs(_string_hash(course)) % 360
    return f"hsl({hue}, {_SATURATION}%, {_LIGHTNESS}%)"


def text_color_for(lightness: int = _LIGHTNESS) -> str:
    # white text on anything darker than 60% lightness
    return "#ffffff" if lightness < 60 else "#000000"


def convert_lectures_to_events(lectures: Iterable[Lecture]) -> List[CalendarEvent]:
    events: List[CalendarEvent] = []
    for index, lecture in enumerate(lectures):
        course = lecture.course or ""
        group_names = ", ".join(_names(lecture.groups))
        lecturer_names = ", ".join(_names(lecture.lecturers))
        room_names = ", ".join(_names(lecture.rooms))
        color = course_color(course)

        events.append(CalendarEvent(
            # same slot can hold several sections; group/room/position keep ids apart
            id=f"{lecture.id}-{group_names}-{room_names}-{index}",
            title=course,
            start=lecture.start_time,
            end=lecture.end_time,
            background_color=color,
            border_color=color,
            text_color=text_color_for(),
            extended_props=EventProps(
                course=course,
                type=lecture.execution_type or "",
                group=group_names,
                persons=lecturer_names or None,
                location=room_names or None,
            ),
        ))
    return events
