from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.router_guard import require_auth_user, require_capability
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import CapabilityFlags, MenuCreateRequest, PermissionCreateRequest, RoleCreateRequest, RolePermissionsRequest
from app.services.permission_service import (
    create_menu,
    create_permission_row,
    create_role,
    list_menus,
    list_permissions,
    list_roles,
    readable_menus_for_user,
    replace_role_permissions,
    set_capabilities,
)


router = APIRouter(prefix='/api', tags=['Permissions'], route_class=EndpointNameRoute)
PERMISSIONS_MENU_PATH = '/permissions'


@router.get('/roles')
def get_roles(
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_roles(db)}


@router.post('/roles', status_code=201)
def post_role(
    payload: RoleCreateRequest,
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    row = create_role(db, payload.role_name, [item.model_dump() for item in payload.permissions])
    return {'success': True, 'row': row}


@router.put('/roles/{role_id}/permissions')
def put_role_permissions(
    role_id: int,
    payload: RolePermissionsRequest,
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'update')),
    db: Session = Depends(get_db),
):
    count = replace_role_permissions(db, role_id, [item.model_dump() for item in payload.permissions])
    return {'success': True, 'count': count}


@router.get('/permissions')
def get_permissions(
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_permissions(db)}


@router.post('/permissions', status_code=201)
def post_permission(
    payload: PermissionCreateRequest,
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    flags = payload.model_dump(exclude={'role_id', 'menu_id'})
    row = create_permission_row(db, role_id=payload.role_id, menu_id=payload.menu_id, flags=flags)
    return {'success': True, 'row': row}


@router.put('/permissions/{permission_id}')
def put_permission(
    permission_id: int,
    payload: CapabilityFlags,
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'update')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': set_capabilities(db, permission_id, payload.model_dump())}


@router.get('/menus')
def get_menus(
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'read')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': list_menus(db)}


@router.post('/menus', status_code=201)
def post_menu(
    payload: MenuCreateRequest,
    _: dict = Depends(require_capability(PERMISSIONS_MENU_PATH, 'create')),
    db: Session = Depends(get_db),
):
    return {'success': True, 'row': create_menu(db, **payload.model_dump())}


@router.get('/menus/me')
def get_my_menus(
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    return {'success': True, 'rows': readable_menus_for_user(db, user['user_id'])}
