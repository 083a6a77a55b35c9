from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------- Upstream records ----------
# The provider sends more fields than we use; unknown ones are ignored and
# numeric ids are normalised to strings so cache keys stay stable.

class UpstreamModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)


class TokenResponse(UpstreamModel):
    token: str = Field(..., min_length=1)


class SchoolUrlResponse(UpstreamModel):
    server: str = Field(..., min_length=1)


class SchoolInfo(UpstreamModel):
    """
    Canonical school metadata. `school_code` is the provider's internal code,
    which is what every later call must use (it can differ from the
    human-facing code such as 'feri').
    """
    school_code: str = Field(..., alias="schoolCode")
    name: Optional[str] = None


class Programme(UpstreamModel):
    id: str
    name: str = ""
    year: str = Field("", description="Number of study years the programme spans.")


class Branch(UpstreamModel):
    id: str
    branch_name: str = Field("", alias="branchName")


class Group(UpstreamModel):
    id: str
    name: str = ""


class NamedRef(UpstreamModel):
    name: Optional[str] = None


class Lecture(UpstreamModel):
    """One scheduled slot, exactly as the provider returns it. Never mutated."""
    id: str
    course: Optional[str] = None
    execution_type: Optional[str] = Field(None, alias="executionType")
    start_time: str
    end_time: str
    groups: List[NamedRef] = Field(default_factory=list)
    lecturers: List[NamedRef] = Field(default_factory=list)
    rooms: List[NamedRef] = Field(default_factory=list)

    @field_validator("groups", "lecturers", "rooms", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        # online slots come back with "rooms": null
        return [] if value is None else value


# ---------- Resolved context ----------

@dataclass(frozen=True)
class SchoolContext:
    human_code: str
    server_url: str
    school_code: str


class GroupWithBranch(BaseModel):
    id: str
    name: str
    branch_id: str = Field(..., serialization_alias="branchId")


# Course name -> group names. Used both for the index of available groups
# and for a user's selection.
CourseGroups = Dict[str, List[str]]
SelectedGroups = Dict[str, List[str]]


# ---------- Calendar projection ----------

class EventProps(BaseModel):
    course: str
    type: str
    group: str
    persons: Optional[str] = None
    location: Optional[str] = None


class CalendarEvent(BaseModel):
    """Display record consumed by the calendar widget."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    start: str
    end: str
    background_color: str = Field(..., alias="backgroundColor")
    border_color: str = Field(..., alias="borderColor")
    text_color: str = Field(..., alias="textColor")
    extended_props: EventProps = Field(..., alias="extendedProps")


# ---------- API responses ----------

class TimetableResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    events: List[CalendarEvent] = Field(default_factory=list)
    course_groups: CourseGroups = Field(default_factory=dict, alias="courseGroups")


class CacheEntryStats(BaseModel):
    key: str
    age_s: float
    expires_in_s: float
    expired: bool


class CacheStats(BaseModel):
    size: int
    max_entries: int
    default_ttl: float
    entries: List[CacheEntryStats] = Field(default_factory=list)
