# timetable/errors.py
from __future__ import annotations

from typing import Optional


class TimetableError(Exception):
    """Base class for every failure the caching/session layer surfaces."""

    status_code: int = 500


class ConfigurationError(TimetableError):
    """A required setting (usually a credential env var) is missing or malformed."""

    status_code = 500

    def __init__(self, message: str, variable: Optional[str] = None):
        super().__init__(message)
        self.variable = variable


class AuthenticationError(TimetableError):
    """The login endpoint rejected us, was unreachable, or answered garbage."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class HttpError(TimetableError):
    status_code = 502

    def __init__(self, status: int, body: str, url: str = ""):
        super().__init__(f"Upstream returned HTTP {status} for {url or 'request'}")
        self.status = status
        self.body = body
        self.url = url


class ParseError(TimetableError):
    status_code = 502

    def __init__(self, message: str, raw_body: str, url: str = ""):
        super().__init__(message)
        self.raw_body = raw_body
        self.url = url


class ResolutionError(TimetableError):
    """A dependent lookup ran before the school context was resolved."""

    status_code = 503


class UpstreamUnavailable(TimetableError):
    """Connect error or timeout: no HTTP status was ever received."""

    status_code = 504

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url
