from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFoundError, ValidationError
from app.core.time_provider import to_iso_utc
from app.db import commit_or_raise
from app.models import ClassType, Payment, Role, RoleRecord, User


logger = logging.getLogger(__name__)


def serialize_payment(row: Payment) -> dict[str, Any]:
    return {
        'id': row.id,
        'student_id': row.student_id,
        'student_name': row.student.full_name if row.student else '',
        'class_type_id': row.class_type_id,
        'class_type': row.class_type.name if row.class_type else None,
        'amount': float(row.amount or 0),
        'num_lessons': int(row.num_lessons or 0),
        'payment_method': row.payment_method,
        'payment_date': row.payment_date.isoformat() if row.payment_date else None,
        'source_event_id': row.source_event_id,
        'created_at': to_iso_utc(row.created_at),
    }


def list_payments(db: Session, *, student_id: int | None = None) -> list[dict[str, Any]]:
    query = db.query(Payment).options(selectinload(Payment.student), selectinload(Payment.class_type))
    if student_id is not None:
        query = query.filter(Payment.student_id == student_id)
    rows = query.order_by(Payment.payment_date.desc(), Payment.id.desc()).all()
    return [serialize_payment(row) for row in rows]


def create_payment(
    db: Session,
    *,
    student_id: int,
    class_type_id: int,
    amount: float,
    num_lessons: int,
    payment_method: str,
    payment_date: date,
) -> dict[str, Any]:
    student = (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(User.id == student_id, RoleRecord.role_name == Role.STUDENT.value)
        .first()
    )
    if not student:
        raise NotFoundError(f'Student {student_id} not found')
    if not db.query(ClassType).filter(ClassType.id == class_type_id).first():
        raise NotFoundError('Class type not found')
    if not (payment_method or '').strip():
        raise ValidationError('payment_method is required')

    row = Payment(
        student_id=student_id,
        class_type_id=class_type_id,
        amount=amount,
        num_lessons=num_lessons,
        payment_method=payment_method.strip(),
        payment_date=payment_date,
    )
    db.add(row)
    commit_or_raise(db, operation='payment')
    db.refresh(row)
    logger.info('payment_created id=%s student_id=%s lessons=%s', row.id, student_id, num_lessons)
    return serialize_payment(row)


def delete_payment(db: Session, payment_id: int) -> None:
    row = db.query(Payment).filter(Payment.id == payment_id).first()
    if not row:
        raise NotFoundError('Payment not found')
    db.delete(row)
    commit_or_raise(db, operation='payment')
    logger.info('payment_deleted id=%s', payment_id)


def update_payment(db: Session, payment_id: int, changes: dict[str, Any]) -> dict[str, Any]:
    """Applies only the fields present in ``changes``."""
    row = db.query(Payment).filter(Payment.id == payment_id).first()
    if not row:
        raise NotFoundError('Payment not found')
    if changes.get('class_type_id') is not None:
        if not db.query(ClassType).filter(ClassType.id == changes['class_type_id']).first():
            raise NotFoundError('Class type not found')
        row.class_type_id = changes['class_type_id']
    if changes.get('payment_method') is not None:
        method = changes['payment_method'].strip()
        if not method:
            raise ValidationError('payment_method is required')
        row.payment_method = method
    for field in ('amount', 'num_lessons', 'payment_date'):
        if changes.get(field) is not None:
            setattr(row, field, changes[field])
    commit_or_raise(db, operation='payment')
    db.refresh(row)
    logger.info('payment_updated id=%s fields=%s', row.id, ','.join(sorted(name for name, value in changes.items() if value is not None)))
    return serialize_payment(row)
