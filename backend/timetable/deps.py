from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, TYPE_CHECKING

from dotenv import load_dotenv
from fastapi import Request

from timetable.errors import ConfigurationError

if TYPE_CHECKING:
    from timetable.upstream.session import TimetableSession

# ---- Load .env early (once) ----
# backend/.env relative to this file; values already in the shell win.
env_path = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=env_path, override=False)

DEFAULT_API_URL = "https://wise-tt.com/WTTWebRestAPI/ws/rest/"
USERNAME_VAR = "WTT_USERNAME"
PASSWORD_VAR = "WTT_PASSWORD"


# Settings field -> env var; each must be > 0
_POSITIVE_SECONDS = (
    ("request_timeout_s", "WTT_TIMEOUT_S"),
    ("cache_default_ttl_s", "CACHE_DEFAULT_TTL_S"),
    ("cache_sweep_interval_s", "CACHE_SWEEP_INTERVAL_S"),
    ("ttl_server_url_s", "TTL_SERVER_URL_S"),
    ("ttl_school_info_s", "TTL_SCHOOL_INFO_S"),
    ("ttl_programmes_s", "TTL_PROGRAMMES_S"),
    ("ttl_branches_s", "TTL_BRANCHES_S"),
    ("ttl_groups_s", "TTL_GROUPS_S"),
    ("ttl_lectures_s", "TTL_LECTURES_S"),
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", variable=name) from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", variable=name) from None


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration. TTLs and the token buffer are heuristics tuned to
    how often the provider's data actually changes; all of them are seconds.

    Credentials are not part of the constructed object unless
    passed explicitly: `credentials()` reads them the first time a login is
    needed, so a process without them still starts.
    """

    api_url: str = DEFAULT_API_URL
    school_code: str = "feri"
    language: str = "slo"
    request_timeout_s: float = 10.0

    cache_default_ttl_s: float = 10 * 60
    cache_max_entries: int = 500
    cache_sweep_interval_s: float = 5 * 60

    token_lifetime_s: float = 30 * 60
    token_expiry_buffer_s: float = 5 * 60

    ttl_server_url_s: float = 60 * 60
    ttl_school_info_s: float = 30 * 60
    ttl_programmes_s: float = 20 * 60
    ttl_branches_s: float = 15 * 60
    ttl_groups_s: float = 10 * 60
    ttl_lectures_s: float = 5 * 60

    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        if not (0 < self.token_expiry_buffer_s < self.token_lifetime_s):
            raise ConfigurationError(
                "TOKEN_EXPIRY_BUFFER_S must be positive and smaller than TOKEN_LIFETIME_S",
                variable="TOKEN_EXPIRY_BUFFER_S",
            )
        for attr, variable in _POSITIVE_SECONDS:
            if getattr(self, attr) <= 0:
                raise ConfigurationError(f"{variable} must be a positive number of seconds", variable=variable)
        if self.cache_max_entries < 1:
            raise ConfigurationError("CACHE_MAX_ENTRIES must be at least 1", variable="CACHE_MAX_ENTRIES")
        if not self.api_url.endswith("/"):
            object.__setattr__(self, "api_url", self.api_url + "/")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_url=os.getenv("WTT_API_URL", DEFAULT_API_URL).strip() or DEFAULT_API_URL,
            school_code=os.getenv("WTT_SCHOOL_CODE", "feri").strip() or "feri",
            language=os.getenv("WTT_LANGUAGE", "slo").strip() or "slo",
            request_timeout_s=_env_float("WTT_TIMEOUT_S", 10.0),
            cache_default_ttl_s=_env_float("CACHE_DEFAULT_TTL_S", 10 * 60),
            cache_max_entries=_env_int("CACHE_MAX_ENTRIES", 500),
            cache_sweep_interval_s=_env_float("CACHE_SWEEP_INTERVAL_S", 5 * 60),
            token_lifetime_s=_env_float("TOKEN_LIFETIME_S", 30 * 60),
            token_expiry_buffer_s=_env_float("TOKEN_EXPIRY_BUFFER_S", 5 * 60),
            ttl_server_url_s=_env_float("TTL_SERVER_URL_S", 60 * 60),
            ttl_school_info_s=_env_float("TTL_SCHOOL_INFO_S", 30 * 60),
            ttl_programmes_s=_env_float("TTL_PROGRAMMES_S", 20 * 60),
            ttl_branches_s=_env_float("TTL_BRANCHES_S", 15 * 60),
            ttl_groups_s=_env_float("TTL_GROUPS_S", 10 * 60),
            ttl_lectures_s=_env_float("TTL_LECTURES_S", 5 * 60),
        )

    @property
    def token_ttl_s(self) -> float:
        """How long a fetched token is trusted: strictly inside its real validity."""
        return self.token_lifetime_s - self.token_expiry_buffer_s

    def credentials(self) -> Tuple[str, str]:
        """
        Return (username, password) for the login endpoint.
        Never read env at startup; only when a token is actually needed.
        """
        username = self.username or os.getenv(USERNAME_VAR)
        if not username:
            raise ConfigurationError(f"{USERNAME_VAR} environment variable is not set", variable=USERNAME_VAR)
        password = self.password or os.getenv(PASSWORD_VAR)
        if not password:
            raise ConfigurationError(f"{PASSWORD_VAR} environment variable is not set", variable=PASSWORD_VAR)
        return username, password


def get_timetable(request: Request) -> "TimetableSession":
    """Return the session the lifespan handler attached to the app."""
    return request.app.state.timetable
