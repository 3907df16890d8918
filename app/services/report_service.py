from __future__ import annotations

import csv
import io
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.core.time_provider import TimeProvider, default_time_provider
from app.db import commit_or_raise
from app.metrics import timed_service
from app.models import CalendarEvent, ClassStatus, ClassType, Payment, Role, RoleRecord, TeacherRate, User
from app.services.mail_service import Attachment, SendGridClient


TRIAL_CLASS_TYPE = 'Trial-Lesson'
REGULAR_CLASS_TYPE = 'Regular-Lesson'
NO_SHOW_CREDIT_METHOD = 'no-show-credit'

# class types billed at another type's rate
RATE_ALIASES = {
    'No Show': REGULAR_CLASS_TYPE,
    'Trial-Lesson No Show': TRIAL_CLASS_TYPE,
}
TAUGHT_STATUSES = (ClassStatus.GIVEN.value, ClassStatus.NO_SHOW_STUDENT.value)
CONSUMED_STATUSES = TAUGHT_STATUSES + (ClassStatus.NO_SHOW_TEACHER.value,)

DAILY_REPORT_COLUMNS: dict[str, list[tuple[str, str]]] = {
    'Students': [('id', 'ID'), ('full_name', 'Full Name'), ('note', 'Note'), ('created_at', 'Created At'), ('updated_at', 'Updated At')],
    'Teachers': [('id', 'ID'), ('full_name', 'Full Name'), ('created_at', 'Created At'), ('updated_at', 'Updated At')],
    'Lessons': [
        ('id', 'ID'),
        ('student_name', 'Student Name'),
        ('teacher_name', 'Teacher Name'),
        ('class_type', 'Class Type'),
        ('class_date', 'Class Date'),
        ('class_status', 'Class Status'),
        ('created_at', 'Created At'),
        ('updated_at', 'Updated At'),
    ],
    'Payments': [
        ('id', 'ID'),
        ('student_name', 'Student Name'),
        ('class_type', 'Class Type'),
        ('amount', 'Amount'),
        ('num_lessons', 'Number of Lessons'),
        ('payment_method', 'Payment Method'),
        ('payment_date', 'Payment Date'),
        ('created_at', 'Created At'),
        ('updated_at', 'Updated At'),
    ],
}

logger = logging.getLogger(__name__)


def _fmt_day(value: date | datetime | None) -> str:
    if value is None:
        return ''
    return value.strftime('%d/%m/%Y')


def _users_by_role(db: Session, role: Role) -> list[User]:
    return (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(RoleRecord.role_name == role.value)
        .order_by(User.id.asc())
        .all()
    )


def _date_bounds(start_date: date | None, end_date: date | None) -> tuple[datetime | None, datetime | None]:
    lower = datetime.combine(start_date, time.min) if start_date else None
    upper = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None
    return lower, upper


def daily_report_rows(db: Session) -> dict[str, list[dict[str, Any]]]:
    students = [
        {
            'id': index,
            'full_name': row.full_name,
            'note': row.note or '',
            'created_at': _fmt_day(row.created_at),
            'updated_at': _fmt_day(row.updated_at),
        }
        for index, row in enumerate(_users_by_role(db, Role.STUDENT), start=1)
    ]
    teachers = [
        {
            'id': index,
            'full_name': row.full_name,
            'created_at': _fmt_day(row.created_at),
            'updated_at': _fmt_day(row.updated_at),
        }
        for index, row in enumerate(_users_by_role(db, Role.TEACHER), start=1)
    ]
    events = (
        db.query(CalendarEvent)
        .options(selectinload(CalendarEvent.student), selectinload(CalendarEvent.teacher))
        .order_by(CalendarEvent.start_date.asc(), CalendarEvent.id.asc())
        .all()
    )
    lessons = [
        {
            'id': index,
            'student_name': row.student.full_name if row.student else '',
            'teacher_name': row.teacher.full_name if row.teacher else '',
            'class_type': row.class_type or '',
            'class_date': _fmt_day(row.start_date),
            'class_status': row.class_status or '',
            'created_at': _fmt_day(row.created_at),
            'updated_at': _fmt_day(row.updated_at),
        }
        for index, row in enumerate(events, start=1)
    ]
    payment_rows = (
        db.query(Payment)
        .options(selectinload(Payment.student), selectinload(Payment.class_type))
        .order_by(Payment.payment_date.asc(), Payment.id.asc())
        .all()
    )
    payments = [
        {
            'id': index,
            'student_name': row.student.full_name if row.student else '',
            'class_type': row.class_type.name if row.class_type else '',
            'amount': f'{float(row.amount or 0):.2f}',
            'num_lessons': int(row.num_lessons or 0),
            'payment_method': row.payment_method or '',
            'payment_date': _fmt_day(row.payment_date),
            'created_at': _fmt_day(row.created_at),
            'updated_at': _fmt_day(row.updated_at),
        }
        for index, row in enumerate(payment_rows, start=1)
    ]
    return {'Students': students, 'Teachers': teachers, 'Lessons': lessons, 'Payments': payments}


def render_csv(columns: list[tuple[str, str]], rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([title for _, title in columns])
    for row in rows:
        writer.writerow([row.get(key, '') for key, _ in columns])
    return buffer.getvalue()


def _report_html(today_label: str) -> str:
    sections = ''.join(f'<li>{name} report</li>' for name in DAILY_REPORT_COLUMNS)
    return (
        f'<h1>Daily Reports</h1><p>{today_label}</p>'
        '<p>Hello Admin, your daily reports have been generated and are attached.</p>'
        f'<ul>{sections}</ul>'
        f'<p>{settings.app_name}</p>'
    )


@timed_service('daily_report_send')
def send_daily_report(
    db: Session,
    *,
    client: SendGridClient | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict[str, Any]:
    rows = daily_report_rows(db)
    attachments = [
        Attachment(filename=f'{name}.csv', content=render_csv(DAILY_REPORT_COLUMNS[name], rows[name]).encode('utf-8'))
        for name in DAILY_REPORT_COLUMNS
    ]
    today_label = time_provider.today().strftime('%A, %B %d, %Y')
    client = client or SendGridClient()
    result = client.send(
        sender=settings.report_sender_email,
        recipient=settings.report_recipient_email,
        subject=f'{settings.app_name} Daily Reports - {today_label}',
        html=_report_html(today_label),
        attachments=attachments,
    )
    logger.info(
        'daily_report_done sent=%s students=%s teachers=%s lessons=%s payments=%s',
        result.get('sent'),
        len(rows['Students']),
        len(rows['Teachers']),
        len(rows['Lessons']),
        len(rows['Payments']),
    )
    return {**result, 'counts': {name: len(items) for name, items in rows.items()}}


def class_stats(db: Session, *, student_id: int | None = None) -> list[dict[str, Any]]:
    """Paid lesson balance per student, trial lessons excluded.

    ``used_classes`` counts lessons that took a paid slot (given or a no-show
    by either side); students who never paid for a non-trial lesson are left
    out. ``student_id`` narrows the result to that one student.
    """
    trial = db.query(ClassType).filter(ClassType.name == TRIAL_CLASS_TYPE).first()
    students = _users_by_role(db, Role.STUDENT)
    if student_id is not None:
        students = [row for row in students if row.id == student_id]
    result = []
    for student in students:
        payments = db.query(Payment).filter(Payment.student_id == student.id)
        if trial is not None:
            payments = payments.filter(Payment.class_type_id != trial.id)
        total = sum(int(row.num_lessons or 0) for row in payments.all())
        if total <= 0:
            continue
        used = (
            db.query(CalendarEvent)
            .filter(
                CalendarEvent.student_id == student.id,
                CalendarEvent.class_status.in_(CONSUMED_STATUSES),
                (CalendarEvent.class_type.is_(None)) | (CalendarEvent.class_type != TRIAL_CLASS_TYPE),
            )
            .count()
        )
        result.append(
            {
                'id': student.id,
                'name': student.full_name,
                'total_classes': total,
                'used_classes': used,
                'remaining_classes': total - used,
            }
        )
    return result


def _rate_table(db: Session, teacher_id: int) -> dict[str, float]:
    rows = (
        db.query(TeacherRate)
        .options(selectinload(TeacherRate.class_type))
        .filter(TeacherRate.teacher_id == teacher_id)
        .all()
    )
    return {row.class_type.name: float(row.rate or 0) for row in rows if row.class_type}


@timed_service('salary_report')
def salary_report(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    teacher_id: int | None = None,
) -> list[dict[str, Any]]:
    """Per-teacher lesson counts and pay by class type. Writes nothing."""
    lower, upper = _date_bounds(start_date, end_date)
    teachers = _users_by_role(db, Role.TEACHER)
    if teacher_id is not None:
        teachers = [row for row in teachers if row.id == teacher_id]

    report = []
    for teacher in teachers:
        query = db.query(CalendarEvent).filter(
            CalendarEvent.teacher_id == teacher.id,
            CalendarEvent.class_status.in_(TAUGHT_STATUSES),
        )
        if lower is not None:
            query = query.filter(CalendarEvent.start_date >= lower)
        if upper is not None:
            query = query.filter(CalendarEvent.start_date < upper)

        rates = _rate_table(db, teacher.id)
        totals: dict[str, dict[str, float]] = defaultdict(lambda: {'classes': 0, 'salary': 0.0})
        for event in query.order_by(CalendarEvent.start_date.asc()).all():
            if not event.class_type:
                continue
            rate = rates.get(RATE_ALIASES.get(event.class_type, event.class_type), 0.0)
            totals[event.class_type]['classes'] += 1
            totals[event.class_type]['salary'] += rate

        report.append(
            {
                'id': teacher.id,
                'name': teacher.full_name,
                'class_type_stats': [
                    {
                        'class_type': name,
                        'total_classes_taught': int(values['classes']),
                        'total_salary': f"{values['salary']:.2f}",
                    }
                    for name, values in totals.items()
                ],
            }
        )
    return report


def post_no_show_adjustments(db: Session) -> dict[str, int]:
    """Credits one lesson back to the student of every teacher no-show.

    Each credit is a zero-amount payment tied to its event through
    ``source_event_id``, so running this again posts nothing new.
    """
    already_posted = {
        row.source_event_id
        for row in db.query(Payment.source_event_id).filter(Payment.source_event_id.isnot(None)).all()
    }
    events = (
        db.query(CalendarEvent)
        .filter(CalendarEvent.class_status == ClassStatus.NO_SHOW_TEACHER.value)
        .order_by(CalendarEvent.id.asc())
        .all()
    )
    class_types = {row.name: row.id for row in db.query(ClassType).all()}
    posted = 0
    skipped = 0
    for event in events:
        if event.id in already_posted:
            continue
        class_type_id = class_types.get(event.class_type or '') or class_types.get(REGULAR_CLASS_TYPE)
        if class_type_id is None:
            logger.warning('no_show_adjustment_skipped event_id=%s reason=unknown_class_type', event.id)
            skipped += 1
            continue
        db.add(
            Payment(
                student_id=event.student_id,
                class_type_id=class_type_id,
                amount=0,
                num_lessons=1,
                payment_method=NO_SHOW_CREDIT_METHOD,
                payment_date=event.start_date.date(),
                source_event_id=event.id,
            )
        )
        posted += 1
    if posted:
        commit_or_raise(db, operation='no-show adjustments')
    logger.info('no_show_adjustments_posted posted=%s skipped=%s', posted, skipped)
    return {'posted': posted, 'skipped': skipped}
