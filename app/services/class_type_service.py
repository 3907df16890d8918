from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.db import commit_or_raise
from app.models import ClassType, Payment, Role, RoleRecord, TeacherRate, User


DEFAULT_CLASS_TYPES = ('Regular-Lesson', 'Trial-Lesson', 'No Show', 'Trial-Lesson No Show')
logger = logging.getLogger(__name__)


def list_class_types(db: Session) -> list[dict[str, Any]]:
    return [{'id': row.id, 'name': row.name} for row in db.query(ClassType).order_by(ClassType.id.asc()).all()]


def create_class_type(db: Session, name: str) -> dict[str, Any]:
    clean = (name or '').strip()
    if not clean:
        raise ValidationError('name is required')
    if find_class_type(db, clean) is not None:
        raise ValidationError('Class type already exists')
    row = ClassType(name=clean)
    db.add(row)
    commit_or_raise(db, operation='class type')
    db.refresh(row)
    logger.info('class_type_created id=%s name=%s', row.id, row.name)
    return {'id': row.id, 'name': row.name}


def _get_class_type(db: Session, class_type_id: int) -> ClassType:
    row = db.query(ClassType).filter(ClassType.id == class_type_id).first()
    if not row:
        raise NotFoundError('Class type not found')
    return row


def update_class_type(db: Session, class_type_id: int, name: str) -> dict[str, Any]:
    row = _get_class_type(db, class_type_id)
    clean = (name or '').strip()
    if not clean:
        raise ValidationError('name is required')
    existing = find_class_type(db, clean)
    if existing is not None and existing.id != row.id:
        raise ValidationError('Class type already exists')
    previous = row.name
    row.name = clean
    commit_or_raise(db, operation='class type')
    logger.info('class_type_renamed id=%s from=%s to=%s', row.id, previous, row.name)
    return {'id': row.id, 'name': row.name}


def delete_class_type(db: Session, class_type_id: int) -> None:
    """Drops the class type and its teacher rates; paid lessons keep it alive."""
    row = _get_class_type(db, class_type_id)
    if db.query(Payment).filter(Payment.class_type_id == row.id).first():
        raise ValidationError('Class type is used by payments')
    db.query(TeacherRate).filter(TeacherRate.class_type_id == row.id).delete(synchronize_session='fetch')
    db.delete(row)
    commit_or_raise(db, operation='class type')
    logger.info('class_type_deleted id=%s', class_type_id)


def find_class_type(db: Session, name: str | None) -> ClassType | None:
    clean = (name or '').strip()
    if not clean:
        return None
    return db.query(ClassType).filter(ClassType.name == clean).first()


def set_teacher_rates(db: Session, teacher_id: int, rates: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Upserts one rate per class type; class types left out keep their rate."""
    teacher = (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(User.id == teacher_id, RoleRecord.role_name == Role.TEACHER.value)
        .first()
    )
    if not teacher:
        raise NotFoundError(f'Teacher {teacher_id} not found')

    known_ids = {row.id for row in db.query(ClassType.id).all()}
    existing = {row.class_type_id: row for row in db.query(TeacherRate).filter(TeacherRate.teacher_id == teacher_id).all()}
    for item in rates:
        class_type_id = int(item['class_type_id'])
        if class_type_id not in known_ids:
            raise NotFoundError(f'Class type {class_type_id} not found')
        amount = float(item['rate'])
        if amount < 0:
            raise ValidationError('rate must not be negative')
        row = existing.get(class_type_id)
        if row is None:
            row = TeacherRate(teacher_id=teacher_id, class_type_id=class_type_id, rate=amount)
            db.add(row)
            existing[class_type_id] = row
        else:
            row.rate = amount
    commit_or_raise(db, operation='teacher rates')
    logger.info('teacher_rates_saved teacher_id=%s count=%s', teacher_id, len(rates))
    return [
        {'class_type_id': class_type_id, 'rate': float(row.rate or 0)}
        for class_type_id, row in sorted(existing.items())
    ]
