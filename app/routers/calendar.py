from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.cache import wants_bypass
from app.core.router_guard import require_auth_user, require_capability
from app.core.time_provider import to_iso_utc
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import CalendarSyncRequest
from app.services.calendar_service import (
    CALENDAR_MENU_PATH,
    build_operations,
    build_sync_response,
    load_unified_view,
    reconcile_batch,
)
from app.services.scheduling_validator import default_duration_minutes, suggest_end_date


router = APIRouter(prefix='/api/calendar', tags=['Calendar'], route_class=EndpointNameRoute)


@router.get('/events')
def get_calendar_events(
    bypass_cache: str | None = Query(default=None),
    user: dict = Depends(require_capability(CALENDAR_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    view = load_unified_view(
        db,
        viewer_role=user['role'],
        viewer_id=user['user_id'],
        bypass_cache=wants_bypass(bypass_cache),
    )
    return {
        'success': True,
        'resources': {'rows': view['resources']},
        'events': {'rows': view['events']},
        'timeRanges': {'rows': view['availability']},
    }


@router.post('/events')
def sync_calendar_events(
    payload: CalendarSyncRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    operations = build_operations(payload)
    result = reconcile_batch(
        db,
        actor_role=user['role'],
        actor_id=user['user_id'],
        operations=operations,
    )
    return build_sync_response(result)


@router.get('/suggested-end')
def get_suggested_end(
    start: datetime = Query(...),
    class_type: str | None = Query(default=None),
    _: dict = Depends(require_auth_user),
):
    return {
        'success': True,
        'startDate': to_iso_utc(start),
        'endDate': to_iso_utc(suggest_end_date(start, class_type)),
        'duration_minutes': default_duration_minutes(class_type),
    }
