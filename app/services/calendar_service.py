from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.cache import cache, cache_key
from app.core.colors import derive_color
from app.core.errors import NotFoundError, PermissionDenied, StoreError, ValidationError
from app.core.roles import parse_role
from app.core.time_provider import to_iso_utc, to_naive_utc
from app.db import commit_or_raise
from app.metrics import timed_service
from app.models import AvailabilityWindow, CalendarEvent, Role, RoleRecord, User
from app.schemas import CalendarSyncRequest, EventRecordPayload
from app.services.permission_service import has_capability
from app.services.scheduling_validator import assert_event_editable


CALENDAR_MENU_PATH = '/calendar'
CALENDAR_CACHE_PREFIX = 'calendar_view'
CALENDAR_TTL_SECONDS = 60
NOT_ASSIGNED = 'Not assigned'

logger = logging.getLogger(__name__)

# wire field -> column
_PATCHABLE_FIELDS = {
    'class_type': 'class_type',
    'student_name': 'student_id',
    'resourceId': 'teacher_id',
    'class_status': 'class_status',
    'payment_status': 'payment_status',
    'startDate': 'start_date',
    'endDate': 'end_date',
    'recurrenceRule': 'recurrence_rule',
}
_REQUIRED_COLUMNS = {'student_id', 'teacher_id', 'start_date', 'end_date'}


@dataclass(frozen=True)
class CreateEvent:
    phantom_id: str | None
    assignment_phantom_id: str | None
    values: dict[str, Any]


@dataclass(frozen=True)
class PatchEvent:
    event_id: int
    changes: dict[str, Any]


@dataclass(frozen=True)
class DeleteEvent:
    event_id: int


EventOperation = Union[CreateEvent, PatchEvent, DeleteEvent]


@dataclass
class ReconcileResult:
    created_id_map: list[dict[str, Any]] = field(default_factory=list)
    assignment_id_map: list[dict[str, Any]] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    removed: int = 0


def clear_calendar_cache() -> None:
    cache.invalidate_prefix(CALENDAR_CACHE_PREFIX)


def _calendar_cache_key(*, role: str, viewer_id: int) -> str:
    return cache_key(CALENDAR_CACHE_PREFIX, f'{role}:{int(viewer_id or 0)}')


def project_teacher_as_resource(teacher: User) -> dict[str, Any]:
    name = teacher.full_name
    return {
        'id': str(teacher.id),
        'name': name,
        'eventColor': derive_color(name),
    }


def serialize_event(event: CalendarEvent) -> dict[str, Any]:
    student = event.student
    student_label = f'{student.first_name} {student.last_name}' if student else ''
    return {
        'id': event.id,
        'startDate': to_iso_utc(event.start_date),
        'endDate': to_iso_utc(event.end_date),
        'name': f'{student_label} / {event.class_type or NOT_ASSIGNED} / {event.payment_status or NOT_ASSIGNED}',
        'student_name': str(event.student_id),
        'resourceId': str(event.teacher_id),
        'allDay': False,
        'class_type': event.class_type,
        'class_status': event.class_status,
        'payment_status': event.payment_status,
        'recurrenceRule': event.recurrence_rule,
    }


def serialize_window(window: AvailabilityWindow) -> dict[str, Any]:
    teacher_name = window.teacher.full_name if window.teacher else ''
    return {
        'id': window.id,
        'teacher_id': window.teacher_id,
        'startDate': to_iso_utc(window.start_date),
        'endDate': to_iso_utc(window.end_date),
        'name': f"{teacher_name}'s availability",
        'color': derive_color(teacher_name),
        'recurrenceRule': window.recurrence_rule,
    }


def _owner_id(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def filter_rows_for_viewer(
    *,
    viewer_role: str | None,
    viewer_id: int,
    resources: list[dict[str, Any]],
    events: list[dict[str, Any]],
    availability: list[dict[str, Any]],
) -> dict[str, list[dict[str, Any]]]:
    """Returns new row lists visible to the viewer; inputs are not touched.

    Managers and admins see every row, a teacher sees the rows that point at
    their own id, and any other role sees nothing.
    """
    role = parse_role(viewer_role)
    if role in (Role.MANAGER, Role.ADMIN):
        return {
            'resources': list(resources),
            'events': list(events),
            'availability': list(availability),
        }
    if role != Role.TEACHER:
        return {'resources': [], 'events': [], 'availability': []}

    own_id = int(viewer_id)
    return {
        'resources': [row for row in resources if _owner_id(row.get('id')) == own_id],
        'events': [row for row in events if _owner_id(row.get('resourceId')) == own_id],
        'availability': [row for row in availability if _owner_id(row.get('teacher_id')) == own_id],
    }


def _users_with_role(db: Session, role: Role):
    return (
        db.query(User)
        .join(RoleRecord, RoleRecord.id == User.role_id)
        .filter(RoleRecord.role_name == role.value)
    )


@timed_service('calendar_unified_view')
def load_unified_view(
    db: Session,
    *,
    viewer_role: str,
    viewer_id: int,
    bypass_cache: bool = False,
) -> dict[str, list[dict[str, Any]]]:
    token = _calendar_cache_key(role=(viewer_role or '').lower(), viewer_id=viewer_id)
    if not bypass_cache:
        cached = cache.get_cached(token)
        if cached is not None:
            return cached

    teachers = _users_with_role(db, Role.TEACHER).order_by(User.id.asc()).all()
    events = (
        db.query(CalendarEvent)
        .options(selectinload(CalendarEvent.student))
        .order_by(CalendarEvent.start_date.asc(), CalendarEvent.id.asc())
        .all()
    )
    windows = (
        db.query(AvailabilityWindow)
        .options(selectinload(AvailabilityWindow.teacher))
        .order_by(AvailabilityWindow.start_date.asc(), AvailabilityWindow.id.asc())
        .all()
    )

    payload = filter_rows_for_viewer(
        viewer_role=viewer_role,
        viewer_id=viewer_id,
        resources=[project_teacher_as_resource(row) for row in teachers],
        events=[serialize_event(row) for row in events],
        availability=[serialize_window(row) for row in windows],
    )
    cache.set_cached(token, payload, ttl=CALENDAR_TTL_SECONDS)
    return payload


def _parse_user_ref(value: Any, *, label: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be a numeric id') from None
    if parsed <= 0:
        raise ValidationError(f'{label} must be a numeric id')
    return parsed


def _parse_event_id(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'Event id {value!r} is not a saved event') from None


def _column_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column == 'student_id':
        return _parse_user_ref(value, label='student_name')
    if column == 'teacher_id':
        return _parse_user_ref(value, label='resourceId')
    if column in ('start_date', 'end_date'):
        return to_naive_utc(value)
    return value


def build_operations(request: CalendarSyncRequest) -> list[EventOperation]:
    """Turns the wire batch into typed create/patch/delete operations.

    Assignments are matched to added events through ``eventId`` (the event's
    phantom id), never through their position in the list.
    """
    events = request.events
    assignments = request.assignments.added if request.assignments else []
    if events is None:
        return []

    assignment_by_event: dict[str, Any] = {}
    for assignment in assignments:
        if assignment.eventId is not None:
            assignment_by_event[str(assignment.eventId)] = assignment

    operations: list[EventOperation] = []
    seen_phantoms: set[str] = set()
    for record in events.added:
        phantom_id = record.phantom_id or (str(record.id) if record.id is not None else None)
        if phantom_id is not None:
            if phantom_id in seen_phantoms:
                raise ValidationError(f'Duplicate phantom id {phantom_id}')
            seen_phantoms.add(phantom_id)
        assignment = assignment_by_event.get(phantom_id) if phantom_id is not None else None
        operations.append(_create_operation(record, phantom_id, assignment))

    for record in events.updated:
        if record.id is None:
            raise ValidationError('Updated events must carry an id')
        changes = {
            column: _column_value(column, getattr(record, wire_name))
            for wire_name, column in _PATCHABLE_FIELDS.items()
            if wire_name in record.model_fields_set
        }
        for column in _REQUIRED_COLUMNS.intersection(changes):
            if changes[column] is None:
                raise ValidationError(f'{column} cannot be cleared')
        operations.append(PatchEvent(event_id=_parse_event_id(record.id), changes=changes))

    for ref in events.removed:
        operations.append(DeleteEvent(event_id=_parse_event_id(ref.id)))
    return operations


def _create_operation(record: EventRecordPayload, phantom_id: str | None, assignment) -> CreateEvent:
    teacher_ref = record.resourceId
    if teacher_ref is None and assignment is not None:
        teacher_ref = assignment.resourceId
    if record.student_name is None:
        raise ValidationError('student_name is required for new events')
    if teacher_ref is None:
        raise ValidationError('resourceId is required for new events')
    if record.startDate is None or record.endDate is None:
        raise ValidationError('startDate and endDate are required for new events')

    values = {
        'class_type': record.class_type,
        'student_id': _parse_user_ref(record.student_name, label='student_name'),
        'teacher_id': _parse_user_ref(teacher_ref, label='resourceId'),
        'class_status': record.class_status,
        'payment_status': record.payment_status,
        'start_date': to_naive_utc(record.startDate),
        'end_date': to_naive_utc(record.endDate),
        'recurrence_rule': record.recurrenceRule,
    }
    _check_interval(values['start_date'], values['end_date'])
    return CreateEvent(
        phantom_id=phantom_id,
        assignment_phantom_id=assignment.phantom_id if assignment is not None else None,
        values=values,
    )


def _check_interval(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValidationError('endDate must be after startDate')


def _require_user_with_role(db: Session, user_id: int, role: Role, cache_: dict[tuple[int, Role], bool]) -> None:
    key = (user_id, role)
    if key not in cache_:
        cache_[key] = _users_with_role(db, role).filter(User.id == user_id).first() is not None
    if not cache_[key]:
        raise NotFoundError(f'{role.value.capitalize()} {user_id} not found')


def _windows_for_teacher(db: Session, teacher_id: int) -> list[AvailabilityWindow]:
    return db.query(AvailabilityWindow).filter(AvailabilityWindow.teacher_id == teacher_id).all()


def _check_capabilities(db: Session, actor_role: str, operations: list[EventOperation]) -> None:
    needed = set()
    for operation in operations:
        if isinstance(operation, CreateEvent):
            needed.add('create')
        elif isinstance(operation, PatchEvent):
            needed.add('update')
        else:
            needed.add('delete')
    for capability in sorted(needed):
        if not has_capability(db, actor_role, CALENDAR_MENU_PATH, capability):
            raise PermissionDenied(f'Missing {capability} permission on {CALENDAR_MENU_PATH}')


@timed_service('calendar_reconcile_batch')
def reconcile_batch(
    db: Session,
    *,
    actor_role: str,
    actor_id: int,
    operations: list[EventOperation],
) -> ReconcileResult:
    """Validates every operation, then writes the whole batch in one commit.

    A rejected operation raises before anything is written, so a batch is
    applied completely or not at all.
    """
    result = ReconcileResult()
    if not operations:
        return result

    role = parse_role(actor_role)
    actor_is_teacher = role == Role.TEACHER
    _check_capabilities(db, actor_role, operations)

    user_checks: dict[tuple[int, Role], bool] = {}
    creates = [op for op in operations if isinstance(op, CreateEvent)]
    patches = [op for op in operations if isinstance(op, PatchEvent)]
    deletes = [op for op in operations if isinstance(op, DeleteEvent)]

    for op in creates:
        _require_user_with_role(db, op.values['student_id'], Role.STUDENT, user_checks)
        _require_user_with_role(db, op.values['teacher_id'], Role.TEACHER, user_checks)
        if actor_is_teacher and op.values['teacher_id'] != actor_id:
            raise PermissionDenied('Teachers can only schedule their own lessons')

    patch_targets: list[tuple[CalendarEvent, dict[str, Any]]] = []
    for op in patches:
        if not op.changes:
            continue
        event = db.query(CalendarEvent).filter(CalendarEvent.id == op.event_id).first()
        if not event:
            raise NotFoundError(f'Event {op.event_id} not found')
        if actor_is_teacher and event.teacher_id != actor_id:
            raise PermissionDenied('Teachers can only edit their own lessons')
        assert_event_editable(
            actor_role=actor_role,
            event_start=event.start_date,
            event_end=event.end_date,
            windows=_windows_for_teacher(db, event.teacher_id),
        )
        if 'student_id' in op.changes:
            _require_user_with_role(db, op.changes['student_id'], Role.STUDENT, user_checks)
        if 'teacher_id' in op.changes:
            _require_user_with_role(db, op.changes['teacher_id'], Role.TEACHER, user_checks)
            if actor_is_teacher and op.changes['teacher_id'] != actor_id:
                raise PermissionDenied('Teachers cannot hand lessons to another teacher')
        _check_interval(
            op.changes.get('start_date', event.start_date),
            op.changes.get('end_date', event.end_date),
        )
        patch_targets.append((event, op.changes))

    delete_ids = sorted({op.event_id for op in deletes})
    if delete_ids:
        existing = db.query(CalendarEvent).filter(CalendarEvent.id.in_(delete_ids)).all()
        if actor_is_teacher and any(row.teacher_id != actor_id for row in existing):
            raise PermissionDenied('Teachers can only remove their own lessons')
        missing = set(delete_ids) - {row.id for row in existing}
        if missing:
            logger.info('calendar_remove_skipped_missing ids=%s', sorted(missing))

    created_rows: list[tuple[CreateEvent, CalendarEvent]] = []
    try:
        for op in creates:
            row = CalendarEvent(**op.values)
            db.add(row)
            created_rows.append((op, row))
        for event, changes in patch_targets:
            if not changes:
                continue
            for column, value in changes.items():
                setattr(event, column, value)
            result.updated += 1
        db.flush()
        if delete_ids:
            result.removed = (
                db.query(CalendarEvent)
                .filter(CalendarEvent.id.in_(delete_ids))
                .delete(synchronize_session='fetch')
            )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('calendar_batch_write_failed actor_id=%s', actor_id)
        raise StoreError('Could not save calendar events') from exc

    for op, row in created_rows:
        if op.phantom_id is not None:
            result.created_id_map.append({'$PhantomId': op.phantom_id, 'id': row.id})
        if op.assignment_phantom_id is not None:
            result.assignment_id_map.append({'$PhantomId': op.assignment_phantom_id, 'id': row.id})
    result.created = len(created_rows)

    commit_or_raise(db, operation='calendar events')
    clear_calendar_cache()
    logger.info(
        'calendar_batch_saved actor_id=%s created=%s updated=%s removed=%s',
        actor_id,
        result.created,
        result.updated,
        result.removed,
    )
    return result


def build_sync_response(result: ReconcileResult) -> dict[str, Any]:
    payload: dict[str, Any] = {'success': True}
    if result.created_id_map:
        payload['events'] = {'rows': result.created_id_map}
    if result.assignment_id_map:
        payload['assignments'] = {'rows': result.assignment_id_map}
    return payload
