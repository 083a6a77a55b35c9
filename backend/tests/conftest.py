import base64
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

from timetable.deps import Settings

API_URL = "https://wise-tt.test/rest/"
SCHOOL_SERVER = "http://school.test/api/"


class FakeClock:
    """Manually advanced monotonic clock for TTLCache."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def lecture(id, course, groups, start="2025-10-06T08:00:00", end="2025-10-06T10:00:00",
            execution_type="PR", rooms=("G2-P01",), lecturers=("Dr. Novak",)) -> Dict[str, Any]:
    return {
        "id": id,
        "course": course,
        "executionType": execution_type,
        "start_time": start,
        "end_time": end,
        "groups": [{"name": g} for g in groups],
        "lecturers": [{"name": n} for n in lecturers],
        "rooms": [{"name": r} for r in rooms],
    }


DEFAULT_LECTURES = [
    lecture(1, "Programming I", ["RIT 1 RV1"]),
    lecture(2, "Programming I", ["RIT 1 RV2"]),
    lecture(3, "Mathematics", ["RIT 1 RV1", "ITK 1 RV1"], execution_type="PRED"),
    lecture(4, "Physics", ["MAG 1 RV1"]),
]


class FakeProvider:
    """
    In-process stand-in for the timetable REST API, served through
    httpx.MockTransport. Every request is recorded in `calls`.

    `overrides` maps an endpoint name (last path segment, e.g. "login",
    "scheduleByGroups") to a callable(request) -> httpx.Response.
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self.logins = 0
        self.lectures: List[Dict[str, Any]] = list(DEFAULT_LECTURES)
        self.groups: Dict[str, List[Dict[str, Any]]] = {
            "b1": [{"id": 11, "name": "RIT 1 RV1"}, {"id": 12, "name": "RIT 1 RV2"}],
            "b2": [{"id": 21, "name": "ITK 1 RV1"}],
        }
        self.overrides: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.transport = httpx.MockTransport(self.handle)

    def endpoint_calls(self, name: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.url.path.rsplit("/", 1)[-1] == name]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        name = request.url.path.rsplit("/", 1)[-1]
        if name in self.overrides:
            return self.overrides[name](request)

        if name == "login":
            expected = "Basic " + base64.b64encode(b"student:secret").decode()
            if request.headers.get("Authorization") != expected:
                return httpx.Response(401, text="bad credentials")
            self.logins += 1
            return httpx.Response(200, json={"token": f"tok-{self.logins}"})

        if not request.headers.get("Authorization", "").startswith("Bearer tok-"):
            return httpx.Response(401, text="missing token")

        params = request.url.params
        if name == "url":
            return httpx.Response(200, json={"server": SCHOOL_SERVER})
        if name == "schoolCode":
            return httpx.Response(200, json={"schoolCode": "wtt_um_feri", "name": "FERI"})
        if name == "basicProgrammeAll":
            return httpx.Response(200, json=[
                {"id": "P1", "name": "Computer Science", "year": "3"},
                {"id": 7, "name": "Media Communications", "year": "3"},
            ])
        if name == "branchAllForProgrmmeYear":
            return httpx.Response(200, json=[{"id": "b1", "branchName": "RIT"}, {"id": "b2", "branchName": "ITK"}])
        if name == "groupAllForBranch":
            return httpx.Response(200, json=self.groups.get(params.get("branchId"), []))
        if name == "scheduleByGroups":
            # like the real API: only lectures of the requested groups
            requested = set(params.get("groupsId", "").split("_"))
            names = {
                g["name"] for groups in self.groups.values() for g in groups if str(g["id"]) in requested
            }
            return httpx.Response(200, json=[
                lec for lec in self.lectures if any(g["name"] in names for g in lec["groups"])
            ])
        return httpx.Response(404, text=f"unknown endpoint {name}")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url=API_URL, username="student", password="secret", cache_sweep_interval_s=3600)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def respond(status: int, body: Any = None, text: str = "") -> Callable[[httpx.Request], httpx.Response]:
    def _handler(request: httpx.Request) -> httpx.Response:
        if body is not None:
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=text)
    return _handler


def split_groups_param(request: httpx.Request) -> Tuple[str, ...]:
    return tuple(request.url.params["groupsId"].split("_"))
