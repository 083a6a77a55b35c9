"""
Compact, URL-safe token for a user's group selection.

The token is base64url(JSON) of {course: [group names]} with the '='
padding stripped, so it can travel as a plain query parameter.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Optional

from timetable.schemas import SelectedGroups
from timetable.services.logging import get_logger, log_kv

LOG = get_logger("timetable.selection")


def parse_groups_param(token: Optional[str]) -> SelectedGroups:
    """
    Decode a selection token. Returns {} for a missing token and, after
    logging, for anything that isn't a {str: [str, ...]} object.
    """
    if not token:
        return {}

    padded = token + "=" * (-len(token) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        log_kv(LOG, logging.WARNING, "selection.undecodable", error=e.__class__.__name__)
        return {}

    if not isinstance(data, dict):
        log_kv(LOG, logging.WARNING, "selection.bad_shape", type=type(data).__name__)
        return {}

    selected: SelectedGroups = {}
    for course, groups in data.items():
        if not isinstance(groups, list) or not all(isinstance(g, str) for g in groups):
            log_kv(LOG, logging.WARNING, "selection.bad_shape", course=course)
            return {}
        selected[course] = list(groups)
    return selected


def encode_groups_param(selected: SelectedGroups) -> str:
    raw = json.dumps(selected, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
