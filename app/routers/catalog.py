from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.router_guard import require_capability
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import ClassTypeCreateRequest, ClassTypeUpdateRequest, PaymentCreateRequest, PaymentUpdateRequest
from app.services.class_type_service import create_class_type, delete_class_type, list_class_types, update_class_type
from app.services.payment_service import create_payment, delete_payment, list_payments, update_payment


router = APIRouter(prefix='/api', tags=['Catalog'], route_class=EndpointNameRoute)


@router.get('/class-types')
def get_class_types(
    _: dict = Depends(require_capability('/class-types', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_class_types(db)}


@router.post('/class-types', status_code=201)
def post_class_type(
    payload: ClassTypeCreateRequest,
    _: dict = Depends(require_capability('/class-types', 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': create_class_type(db, payload.name)}


@router.put('/class-types/{class_type_id}')
def put_class_type(
    class_type_id: int,
    payload: ClassTypeUpdateRequest,
    _: dict = Depends(require_capability('/class-types', 'update')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': update_class_type(db, class_type_id, payload.name)}


@router.delete('/class-types/{class_type_id}')
def remove_class_type(
    class_type_id: int,
    _: dict = Depends(require_capability('/class-types', 'delete')),
    db: Session = Depends(get_db),
):
    delete_class_type(db, class_type_id)
    return {'success': True}


@router.get('/payments')
def get_payments(
    student_id: int | None = Query(default=None),
    _: dict = Depends(require_capability('/payments', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_payments(db, student_id=student_id)}


@router.get('/payments/student/{student_id}')
def get_student_payments(
    student_id: int,
    _: dict = Depends(require_capability('/payments', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_payments(db, student_id=student_id)}


@router.post('/payments', status_code=201)
def post_payment(
    payload: PaymentCreateRequest,
    _: dict = Depends(require_capability('/payments', 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': create_payment(db, **payload.model_dump())}


@router.delete('/payments/{payment_id}')
def remove_payment(
    payment_id: int,
    _: dict = Depends(require_capability('/payments', 'delete')),
    db: Session = Depends(get_db),
):
    delete_payment(db, payment_id)
    return {'success': True}


@router.put('/payments/{payment_id}')
def put_payment(
    payment_id: int,
    payload: PaymentUpdateRequest,
    _: dict = Depends(require_capability('/payments', 'update')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': update_payment(db, payment_id, payload.model_dump(exclude_unset=True))}
