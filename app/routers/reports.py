from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.router_guard import require_capability
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import SalaryReportRequest
from app.services.report_service import class_stats, post_no_show_adjustments, salary_report, send_daily_report


router = APIRouter(prefix='/api/reports', tags=['Reports'], route_class=EndpointNameRoute)
REPORTS_MENU_PATH = '/reports'


@router.get('/class-stats')
def get_class_stats(
    _: dict = Depends(require_capability(REPORTS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': class_stats(db)}


@router.post('/salary')
def post_salary_report(
    payload: SalaryReportRequest,
    _: dict = Depends(require_capability(REPORTS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    rows = salary_report(
        db,
        start_date=payload.start_date,
        end_date=payload.end_date,
        teacher_id=payload.teacher_id,
    )
    return {'success': True, 'rows': rows}


@router.post('/no-show-adjustments')
def post_adjustments(
    _: dict = Depends(require_capability('/payments', 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, **post_no_show_adjustments(db)}


@router.post('/daily/send')
def post_daily_report(
    _: dict = Depends(require_capability(REPORTS_MENU_PATH, 'download')),
    db: Session = Depends(get_db),
):
    return {'success': True, **send_daily_report(db)}
