from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, PermissionDenied, ValidationError
from app.core.roles import ELEVATED_ROLES, parse_role
from app.core.time_provider import to_iso_utc
from app.db import commit_or_raise
from app.models import ClassInfo, Role, RoleRecord, User, Word


logger = logging.getLogger(__name__)


def _require_role_user(db: Session, user_id: int, role: Role) -> User:
    user = (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(User.id == user_id, RoleRecord.role_name == role.value)
        .first()
    )
    if not user:
        raise NotFoundError(f'{role.value.title()} {user_id} not found')
    return user


def _assert_may_view(viewer_role: str, viewer_id: int, student_id: int) -> None:
    if parse_role(viewer_role) == Role.STUDENT and int(viewer_id) != int(student_id):
        raise PermissionDenied('Students can only see their own records')


def _assert_may_write(actor_role: str, actor_id: int, teacher_id: int) -> None:
    role = parse_role(actor_role)
    if role in ELEVATED_ROLES:
        return
    if role == Role.TEACHER and int(actor_id) == int(teacher_id):
        return
    raise PermissionDenied('Only the teacher who wrote this record or an administrator can change it')


def _required_text(value: str | None, field: str) -> str:
    clean = (value or '').strip()
    if not clean:
        raise ValidationError(f'{field} is required')
    return clean


def serialize_word(row: Word) -> dict[str, Any]:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'teacher_id': row.teacher_id,
        'english_word': row.english_word,
        'translation_word': row.translation_word,
        'created_at': to_iso_utc(row.created_at),
        'updated_at': to_iso_utc(row.updated_at),
    }


def serialize_class_info(row: ClassInfo) -> dict[str, Any]:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'teacher_id': row.teacher_id,
        'teacher_name': row.teacher.full_name if row.teacher else '',
        'course': row.course,
        'unit': row.unit,
        'can_do': row.can_do or '',
        'notes': row.notes or '',
        'class_date': row.class_date.isoformat() if row.class_date else None,
        'created_at': to_iso_utc(row.created_at),
        'updated_at': to_iso_utc(row.updated_at),
    }


def list_words(
    db: Session,
    *,
    viewer_role: str,
    viewer_id: int,
    student_id: int,
    teacher_id: int | None = None,
) -> list[dict[str, Any]]:
    _assert_may_view(viewer_role, viewer_id, student_id)
    query = db.query(Word).filter(Word.student_id == student_id)
    if teacher_id is not None:
        query = query.filter(Word.teacher_id == teacher_id)
    return [serialize_word(row) for row in query.order_by(Word.id.asc()).all()]


def create_word(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    student_id: int,
    teacher_id: int,
    english_word: str,
    translation_word: str,
) -> dict[str, Any]:
    _assert_may_write(actor_role, actor_id, teacher_id)
    _require_role_user(db, student_id, Role.STUDENT)
    _require_role_user(db, teacher_id, Role.TEACHER)
    row = Word(
        student_id=student_id,
        teacher_id=teacher_id,
        english_word=_required_text(english_word, 'english_word'),
        translation_word=_required_text(translation_word, 'translation_word'),
    )
    db.add(row)
    commit_or_raise(db, operation='word')
    db.refresh(row)
    logger.info('word_created id=%s student_id=%s teacher_id=%s', row.id, student_id, teacher_id)
    return serialize_word(row)


def update_word(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    word_id: int,
    english_word: str | None = None,
    translation_word: str | None = None,
) -> dict[str, Any]:
    row = db.query(Word).filter(Word.id == word_id).first()
    if not row:
        raise NotFoundError('Word not found')
    _assert_may_write(actor_role, actor_id, row.teacher_id)
    if english_word is not None:
        row.english_word = _required_text(english_word, 'english_word')
    if translation_word is not None:
        row.translation_word = _required_text(translation_word, 'translation_word')
    commit_or_raise(db, operation='word')
    db.refresh(row)
    logger.info('word_updated id=%s', row.id)
    return serialize_word(row)


def list_class_info(
    db: Session,
    *,
    viewer_role: str,
    viewer_id: int,
    student_id: int,
    teacher_id: int | None = None,
) -> list[dict[str, Any]]:
    """Lesson notes for one student, newest class first."""
    _assert_may_view(viewer_role, viewer_id, student_id)
    query = db.query(ClassInfo).filter(ClassInfo.student_id == student_id)
    if teacher_id is not None:
        query = query.filter(ClassInfo.teacher_id == teacher_id)
    rows = query.order_by(ClassInfo.class_date.desc(), ClassInfo.id.desc()).all()
    return [serialize_class_info(row) for row in rows]


def create_class_info(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    student_id: int,
    teacher_id: int,
    course: str,
    unit: str,
    class_date: date,
    can_do: str = '',
    notes: str = '',
) -> dict[str, Any]:
    _assert_may_write(actor_role, actor_id, teacher_id)
    _require_role_user(db, student_id, Role.STUDENT)
    _require_role_user(db, teacher_id, Role.TEACHER)
    row = ClassInfo(
        student_id=student_id,
        teacher_id=teacher_id,
        course=_required_text(course, 'course'),
        unit=_required_text(unit, 'unit'),
        can_do=(can_do or '').strip(),
        notes=(notes or '').strip(),
        class_date=class_date,
    )
    db.add(row)
    commit_or_raise(db, operation='class info')
    db.refresh(row)
    logger.info('class_info_created id=%s student_id=%s teacher_id=%s', row.id, student_id, teacher_id)
    return serialize_class_info(row)


def update_class_info(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    class_info_id: int,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Applies the given fields only; ``course`` and ``unit`` stay non-empty."""
    row = db.query(ClassInfo).filter(ClassInfo.id == class_info_id).first()
    if not row:
        raise NotFoundError('Class info not found')
    _assert_may_write(actor_role, actor_id, row.teacher_id)
    for field in ('course', 'unit'):
        if changes.get(field) is not None:
            setattr(row, field, _required_text(changes[field], field))
    for field in ('can_do', 'notes'):
        if changes.get(field) is not None:
            setattr(row, field, changes[field].strip())
    if changes.get('class_date') is not None:
        row.class_date = changes['class_date']
    commit_or_raise(db, operation='class info')
    db.refresh(row)
    logger.info('class_info_updated id=%s', row.id)
    return serialize_class_info(row)
