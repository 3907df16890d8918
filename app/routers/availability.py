from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.router_guard import require_capability
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import AvailabilityCreateRequest
from app.services.availability_service import create_window, delete_window, list_windows


router = APIRouter(prefix='/api/availability', tags=['Availability'], route_class=EndpointNameRoute)
AVAILABILITY_MENU_PATH = '/availability'


@router.get('')
def get_availability(
    teacher_id: int | None = Query(default=None),
    user: dict = Depends(require_capability(AVAILABILITY_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    if user['role'] == 'teacher':
        teacher_id = user['user_id']
    return {'success': True, 'rows': list_windows(db, teacher_id=teacher_id)}


@router.post('', status_code=201)
def post_availability(
    payload: AvailabilityCreateRequest,
    user: dict = Depends(require_capability(AVAILABILITY_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    row = create_window(
        db,
        actor_role=user['role'],
        actor_id=user['user_id'],
        teacher_id=payload.teacher_id,
        start_date=payload.startDate,
        end_date=payload.endDate,
        recurrence_rule=payload.recurrenceRule,
    )
    return {'success': True, 'row': row}


@router.delete('/{window_id}')
def remove_availability(
    window_id: int,
    user: dict = Depends(require_capability(AVAILABILITY_MENU_PATH, 'delete')),
    db: Session = Depends(get_db),
):
    delete_window(db, actor_role=user['role'], actor_id=user['user_id'], window_id=window_id)
    return {'success': True}
