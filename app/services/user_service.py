from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFoundError, ValidationError
from app.core.roles import RoleRegistry
from app.core.time_provider import to_iso_utc
from app.db import commit_or_raise
from app.models import AvailabilityWindow, CalendarEvent, ClassInfo, Payment, Role, RoleRecord, TeacherRate, User, Word
from app.services.auth_service import hash_password, normalize_email
from app.services.calendar_service import clear_calendar_cache


logger = logging.getLogger(__name__)


def serialize_user(user: User) -> dict[str, Any]:
    return {
        'id': user.id,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'full_name': user.full_name,
        'email': user.email,
        'role_id': user.role_id,
        'role': user.role.role_name if user.role else None,
        'is_active': bool(user.is_active),
        'note': user.note or '',
        'created_at': to_iso_utc(user.created_at),
        'updated_at': to_iso_utc(user.updated_at),
    }


def _users_by_role(db: Session, role: Role):
    return (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(RoleRecord.role_name == role.value)
        .order_by(User.first_name.asc(), User.last_name.asc(), User.id.asc())
    )


def list_students(db: Session) -> list[dict[str, Any]]:
    return [serialize_user(row) for row in _users_by_role(db, Role.STUDENT).all()]


def list_teachers(db: Session) -> list[dict[str, Any]]:
    rows = _users_by_role(db, Role.TEACHER).options(selectinload(User.rates).selectinload(TeacherRate.class_type)).all()
    result = []
    for row in rows:
        payload = serialize_user(row)
        payload['rates'] = [
            {
                'class_type_id': rate.class_type_id,
                'class_type': rate.class_type.name if rate.class_type else None,
                'rate': float(rate.rate or 0),
            }
            for rate in row.rates
        ]
        result.append(payload)
    return result


def create_user(
    db: Session,
    *,
    role: Role,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    note: str = '',
) -> dict[str, Any]:
    if not (first_name or '').strip():
        raise ValidationError('first_name is required')
    clean_email = _assert_email_free(db, email)

    user = User(
        first_name=first_name.strip(),
        last_name=(last_name or '').strip(),
        email=clean_email,
        password_hash=hash_password(password),
        role_id=RoleRegistry.from_db(db).id_for(role),
        note=(note or '').strip(),
        is_active=True,
    )
    db.add(user)
    commit_or_raise(db, operation='user')
    db.refresh(user)
    if role == Role.TEACHER:
        clear_calendar_cache()
    logger.info('user_created id=%s role=%s', user.id, role.value)
    return serialize_user(user)


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError('User not found')
    return user


def _assert_email_free(db: Session, email: str, *, user_id: int | None = None) -> str:
    clean_email = normalize_email(email)
    if '@' not in clean_email:
        raise ValidationError('A valid email is required')
    query = db.query(User).filter(User.email == clean_email)
    if user_id is not None:
        query = query.filter(User.id != user_id)
    if query.first():
        raise ValidationError('Email already exists')
    return clean_email


def update_role(db: Session, user_id: int, role_id: int) -> dict[str, Any]:
    user = _get_user(db, user_id)
    if not db.query(RoleRecord).filter(RoleRecord.id == role_id).first():
        raise NotFoundError('Role not found')
    previous = user.role_id
    user.role_id = role_id
    commit_or_raise(db, operation='user role')
    db.refresh(user)
    clear_calendar_cache()
    logger.info('user_role_changed id=%s from=%s to=%s', user.id, previous, role_id)
    return serialize_user(user)


def update_status(db: Session, user_id: int, is_active: bool) -> dict[str, Any]:
    user = _get_user(db, user_id)
    user.is_active = bool(is_active)
    commit_or_raise(db, operation='user status')
    db.refresh(user)
    logger.info('user_status_changed id=%s active=%s', user.id, user.is_active)
    return serialize_user(user)


def delete_user(db: Session, user_id: int) -> None:
    """Removes the user together with the lessons, windows, rates, payments
    and student records that reference them."""
    user = _get_user(db, user_id)
    db.query(CalendarEvent).filter(
        or_(CalendarEvent.student_id == user_id, CalendarEvent.teacher_id == user_id)
    ).delete(synchronize_session='fetch')
    db.query(AvailabilityWindow).filter(AvailabilityWindow.teacher_id == user_id).delete(synchronize_session='fetch')
    db.query(Payment).filter(Payment.student_id == user_id).delete(synchronize_session='fetch')
    db.query(TeacherRate).filter(TeacherRate.teacher_id == user_id).delete(synchronize_session='fetch')
    for model in (Word, ClassInfo):
        db.query(model).filter(
            or_(model.student_id == user_id, model.teacher_id == user_id)
        ).delete(synchronize_session='fetch')
    db.delete(user)
    commit_or_raise(db, operation='user')
    clear_calendar_cache()
    logger.info('user_deleted id=%s', user_id)


def list_users(db: Session) -> list[dict[str, Any]]:
    rows = db.query(User).options(selectinload(User.role)).order_by(User.id.asc()).all()
    return [serialize_user(row) for row in rows]


def _get_role_user(db: Session, user_id: int, role: Role) -> User:
    user = _get_user(db, user_id)
    if not user.role or user.role.role_name != role.value:
        raise NotFoundError(f'{role.value.title()} {user_id} not found')
    return user


def update_profile(
    db: Session,
    user_id: int,
    role: Role,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    """Rewrites a student's or teacher's profile.

    The password only changes when one is given and ``note`` is kept for
    students alone.
    """
    user = _get_role_user(db, user_id, role)
    if not (first_name or '').strip():
        raise ValidationError('first_name is required')
    user.email = _assert_email_free(db, email, user_id=user.id)
    user.first_name = first_name.strip()
    user.last_name = (last_name or '').strip()
    if password:
        user.password_hash = hash_password(password)
    if role == Role.STUDENT and note is not None:
        user.note = note.strip()
    commit_or_raise(db, operation='user profile')
    db.refresh(user)
    clear_calendar_cache()
    logger.info('user_profile_updated id=%s role=%s', user.id, role.value)
    return serialize_user(user)


def update_email(db: Session, user_id: int, email: str) -> dict[str, Any]:
    user = _get_user(db, user_id)
    user.email = _assert_email_free(db, email, user_id=user.id)
    commit_or_raise(db, operation='user email')
    db.refresh(user)
    logger.info('user_email_changed id=%s', user.id)
    return serialize_user(user)


def update_password(db: Session, user_id: int, password: str) -> dict[str, Any]:
    user = _get_user(db, user_id)
    user.password_hash = hash_password(password)
    commit_or_raise(db, operation='user password')
    db.refresh(user)
    logger.info('user_password_changed id=%s', user.id)
    return serialize_user(user)


def list_teacher_students(db: Session, teacher_id: int) -> list[dict[str, Any]]:
    """Students with at least one lesson booked with the teacher."""
    _get_role_user(db, teacher_id, Role.TEACHER)
    student_ids = select(CalendarEvent.student_id).where(CalendarEvent.teacher_id == teacher_id)
    rows = (
        _users_by_role(db, Role.STUDENT)
        .filter(User.id.in_(student_ids))
        .all()
    )
    return [serialize_user(row) for row in rows]
