from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.router_guard import require_capability
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import ClassInfoCreateRequest, ClassInfoUpdateRequest, WordCreateRequest, WordUpdateRequest
from app.services.student_record_service import (
    create_class_info,
    create_word,
    list_class_info,
    list_words,
    update_class_info,
    update_word,
)


router = APIRouter(prefix='/api', tags=['Student Records'], route_class=EndpointNameRoute)
WORDS_MENU_PATH = '/words'
CLASS_INFO_MENU_PATH = '/class-info'


@router.get('/words')
def get_words(
    student_id: int = Query(...),
    teacher_id: int | None = Query(default=None),
    user: dict = Depends(require_capability(WORDS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    rows = list_words(
        db,
        viewer_role=user['role'],
        viewer_id=user['user_id'],
        student_id=student_id,
        teacher_id=teacher_id,
    )
    return {'success': True, 'rows': rows}


@router.post('/words', status_code=201)
def post_word(
    payload: WordCreateRequest,
    user: dict = Depends(require_capability(WORDS_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    row = create_word(db, actor_role=user['role'], actor_id=user['user_id'], **payload.model_dump())
    return {'success': True, 'row': row}


@router.put('/words/{word_id}')
def put_word(
    word_id: int,
    payload: WordUpdateRequest,
    user: dict = Depends(require_capability(WORDS_MENU_PATH, 'update')),
    db: Session = Depends(get_db),
):
    row = update_word(db, actor_role=user['role'], actor_id=user['user_id'], word_id=word_id, **payload.model_dump())
    return {'success': True, 'row': row}


@router.get('/class-info')
def get_class_info(
    student_id: int = Query(...),
    teacher_id: int | None = Query(default=None),
    user: dict = Depends(require_capability(CLASS_INFO_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    rows = list_class_info(
        db,
        viewer_role=user['role'],
        viewer_id=user['user_id'],
        student_id=student_id,
        teacher_id=teacher_id,
    )
    return {'success': True, 'rows': rows}


@router.post('/class-info', status_code=201)
def post_class_info(
    payload: ClassInfoCreateRequest,
    user: dict = Depends(require_capability(CLASS_INFO_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    row = create_class_info(db, actor_role=user['role'], actor_id=user['user_id'], **payload.model_dump())
    return {'success': True, 'row': row}


@router.put('/class-info/{class_info_id}')
def put_class_info(
    class_info_id: int,
    payload: ClassInfoUpdateRequest,
    user: dict = Depends(require_capability(CLASS_INFO_MENU_PATH, 'update')),
    db: Session = Depends(get_db),
):
    row = update_class_info(
        db,
        actor_role=user['role'],
        actor_id=user['user_id'],
        class_info_id=class_info_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    return {'success': True, 'row': row}
