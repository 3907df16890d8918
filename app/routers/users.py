from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.errors import PermissionDenied
from app.core.router_guard import require_capability
from app.db import get_db
from app.models import Role
from app.route_logging import EndpointNameRoute
from app.schemas import (
    TeacherRatesRequest,
    UserCreateRequest,
    UserEmailUpdateRequest,
    UserPasswordUpdateRequest,
    UserProfileUpdateRequest,
    UserRoleUpdateRequest,
    UserStatusUpdateRequest,
)
from app.services.class_type_service import set_teacher_rates
from app.services.report_service import class_stats
from app.services.user_service import (
    create_user,
    delete_user,
    list_students,
    list_teacher_students,
    list_teachers,
    list_users,
    update_email,
    update_password,
    update_profile,
    update_role,
    update_status,
)


router = APIRouter(prefix='/api', tags=['Users'], route_class=EndpointNameRoute)


@router.get('/teachers')
def get_teachers(
    _: dict = Depends(require_capability('/teachers', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_teachers(db)}


@router.post('/teachers', status_code=201)
def post_teacher(
    payload: UserCreateRequest,
    _: dict = Depends(require_capability('/teachers', 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': create_user(db, role=Role.TEACHER, **payload.model_dump())}


@router.put('/teachers/{teacher_id}')
def put_teacher(
    teacher_id: int,
    payload: UserProfileUpdateRequest,
    _: dict = Depends(require_capability('/teachers', 'update')),
    db: Session = Depends(get_db),
):
    fields = payload.model_dump(exclude={'note'})
    return {'success': True, 'row': update_profile(db, teacher_id, Role.TEACHER, **fields)}


@router.get('/teachers/{teacher_id}/students')
def get_teacher_students(
    teacher_id: int,
    user: dict = Depends(require_capability('/students', 'read')),
    db: Session = Depends(get_db),
):
    if user['role'] == Role.TEACHER.value and user['user_id'] != teacher_id:
        raise PermissionDenied('Teachers can only list their own students')
    return {'success': True, 'rows': list_teacher_students(db, teacher_id)}


@router.post('/teachers/{teacher_id}/rates')
def post_teacher_rates(
    teacher_id: int,
    payload: TeacherRatesRequest,
    _: dict = Depends(require_capability('/teachers', 'update')),
    db: Session = Depends(get_db),
):
    rows = set_teacher_rates(db, teacher_id, [item.model_dump() for item in payload.rates])
    return {'success': True, 'rows': rows}


@router.get('/students')
def get_students(
    _: dict = Depends(require_capability('/students', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_students(db)}


@router.post('/students', status_code=201)
def post_student(
    payload: UserCreateRequest,
    _: dict = Depends(require_capability('/students', 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': create_user(db, role=Role.STUDENT, **payload.model_dump())}


@router.put('/students/{student_id}')
def put_student(
    student_id: int,
    payload: UserProfileUpdateRequest,
    _: dict = Depends(require_capability('/students', 'update')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': update_profile(db, student_id, Role.STUDENT, **payload.model_dump())}


@router.get('/students/{student_id}/class-stats')
def get_student_class_stats(
    student_id: int,
    _: dict = Depends(require_capability('/students', 'read')),
    db: Session = Depends(get_db),
):
    rows = class_stats(db, student_id=student_id)
    return {'success': True, 'row': rows[0] if rows else None}


@router.get('/users')
def get_users(
    _: dict = Depends(require_capability('/users', 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_users(db)}


@router.put('/users/{user_id}/role')
def put_user_role(
    user_id: int,
    payload: UserRoleUpdateRequest,
    user: dict = Depends(require_capability('/users', 'update')),
    db: Session = Depends(get_db),
):
    if user_id == user['user_id']:
        raise PermissionDenied('You cannot change your own role')
    return {'success': True, 'row': update_role(db, user_id, payload.role_id)}


@router.put('/users/{user_id}/status')
def put_user_status(
    user_id: int,
    payload: UserStatusUpdateRequest,
    user: dict = Depends(require_capability('/users', 'update')),
    db: Session = Depends(get_db),
):
    if user_id == user['user_id'] and not payload.is_active:
        raise PermissionDenied('You cannot deactivate your own account')
    return {'success': True, 'row': update_status(db, user_id, payload.is_active)}


@router.delete('/users/{user_id}')
def remove_user(
    user_id: int,
    user: dict = Depends(require_capability('/users', 'delete')),
    db: Session = Depends(get_db),
):
    if user_id == user['user_id']:
        raise PermissionDenied('You cannot delete your own account')
    delete_user(db, user_id)
    return {'success': True}


@router.put('/users/{user_id}/email')
def put_user_email(
    user_id: int,
    payload: UserEmailUpdateRequest,
    _: dict = Depends(require_capability('/users', 'update')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': update_email(db, user_id, payload.email)}


@router.put('/users/{user_id}/password')
def put_user_password(
    user_id: int,
    payload: UserPasswordUpdateRequest,
    _: dict = Depends(require_capability('/users', 'update')),
    db: Session = Depends(get_db),
):
    update_password(db, user_id, payload.password)
    return {'success': True}
