from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Protocol

from app.core.errors import PermissionDenied
from app.core.roles import ELEVATED_ROLES, parse_role


TRIAL_DURATION_MINUTES = 30
REGULAR_DURATION_MINUTES = 60
_WEEK = timedelta(days=7)


class _Window(Protocol):
    start_date: datetime
    end_date: datetime
    recurrence_rule: str | None


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime


def is_weekly(recurrence_rule: str | None) -> bool:
    return 'FREQ=WEEKLY' in (recurrence_rule or '').upper().replace(' ', '')


def _occurrence_for(window: _Window, candidate_start: datetime) -> Interval:
    start, end = window.start_date, window.end_date
    if not is_weekly(window.recurrence_rule) or candidate_start < start:
        return Interval(start, end)
    weeks = (candidate_start - start) // _WEEK
    shift = _WEEK * weeks
    return Interval(start + shift, end + shift)


def is_within_available_time(
    candidate_start: datetime,
    candidate_end: datetime,
    windows: Iterable[_Window],
) -> bool:
    """True when one single window fully contains the candidate interval.

    Two adjacent windows never combine; weekly windows are compared through
    their occurrence in the week of ``candidate_start``.
    """
    for window in windows:
        occurrence = _occurrence_for(window, candidate_start)
        if candidate_start >= occurrence.start and candidate_end <= occurrence.end:
            return True
    return False


def is_subject_to_availability_check(role: str | None) -> bool:
    return parse_role(role) in ELEVATED_ROLES


def assert_event_editable(
    *,
    actor_role: str | None,
    event_start: datetime,
    event_end: datetime,
    windows: Iterable[_Window],
) -> None:
    if not is_subject_to_availability_check(actor_role):
        return
    if not is_within_available_time(event_start, event_end, windows):
        raise PermissionDenied('Event is outside the teacher availability and cannot be edited')


def default_duration_minutes(class_type: str | None) -> int:
    if (class_type or '').strip().lower() == 'trial':
        return TRIAL_DURATION_MINUTES
    return REGULAR_DURATION_MINUTES


def suggest_end_date(start: datetime, class_type: str | None) -> datetime:
    return start + timedelta(minutes=default_duration_minutes(class_type))
