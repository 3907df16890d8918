from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFoundError, PermissionDenied, ValidationError
from app.core.roles import ELEVATED_ROLES, parse_role
from app.core.time_provider import to_naive_utc
from app.db import commit_or_raise
from app.models import AvailabilityWindow, Role, RoleRecord, User
from app.services.calendar_service import clear_calendar_cache, serialize_window


logger = logging.getLogger(__name__)


def _assert_may_manage(actor_role: str, actor_id: int, teacher_id: int, *, elevated=ELEVATED_ROLES) -> None:
    role = parse_role(actor_role)
    if role in elevated:
        return
    if role == Role.TEACHER and int(actor_id) == int(teacher_id):
        return
    raise PermissionDenied('Only the teacher or an administrator can change this availability')


def _require_teacher(db: Session, teacher_id: int) -> User:
    teacher = (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(User.id == teacher_id, RoleRecord.role_name == Role.TEACHER.value)
        .first()
    )
    if not teacher:
        raise NotFoundError(f'Teacher {teacher_id} not found')
    return teacher


def list_windows(db: Session, *, teacher_id: int | None = None) -> list[dict[str, Any]]:
    query = db.query(AvailabilityWindow).options(selectinload(AvailabilityWindow.teacher))
    if teacher_id is not None:
        query = query.filter(AvailabilityWindow.teacher_id == teacher_id)
    rows = query.order_by(AvailabilityWindow.start_date.asc(), AvailabilityWindow.id.asc()).all()
    return [serialize_window(row) for row in rows]


def create_window(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    teacher_id: int,
    start_date: datetime,
    end_date: datetime,
    recurrence_rule: str | None = None,
) -> dict[str, Any]:
    _assert_may_manage(actor_role, actor_id, teacher_id)
    start = to_naive_utc(start_date)
    end = to_naive_utc(end_date)
    if end <= start:
        raise ValidationError('endDate must be after startDate')
    _require_teacher(db, teacher_id)

    row = AvailabilityWindow(
        teacher_id=teacher_id,
        start_date=start,
        end_date=end,
        recurrence_rule=(recurrence_rule or '').strip() or None,
    )
    db.add(row)
    commit_or_raise(db, operation='availability')
    db.refresh(row)
    clear_calendar_cache()
    logger.info('availability_created id=%s teacher_id=%s actor_id=%s', row.id, teacher_id, actor_id)
    return serialize_window(row)


def delete_window(db: Session, *, actor_role: str, actor_id: int, window_id: int) -> None:
    row = db.query(AvailabilityWindow).filter(AvailabilityWindow.id == window_id).first()
    if not row:
        raise NotFoundError('Availability window not found')
    # removal is limited to the owning teacher and admins
    _assert_may_manage(actor_role, actor_id, row.teacher_id, elevated=frozenset({Role.ADMIN}))
    db.delete(row)
    commit_or_raise(db, operation='availability')
    clear_calendar_cache()
    logger.info('availability_deleted id=%s actor_id=%s', window_id, actor_id)
