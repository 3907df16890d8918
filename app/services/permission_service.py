from __future__ import annotations

import logging
from typing import Any, Literal

from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFoundError, ValidationError
from app.core.roles import parse_role
from app.db import commit_or_raise
from app.models import Menu, Permission, Role, RoleRecord, User


Capability = Literal['create', 'read', 'update', 'delete', 'download']
CAPABILITIES: tuple[str, ...] = ('create', 'read', 'update', 'delete', 'download')

logger = logging.getLogger(__name__)


def _clean_flags(flags: dict[str, Any] | None) -> dict[str, bool]:
    flags = flags or {}
    return {name: bool(flags.get(name) or False) for name in CAPABILITIES}


def _serialize_permission(row: Permission) -> dict[str, Any]:
    return {
        'id': row.id,
        'role_id': row.role_id,
        'role_name': row.role.role_name if row.role else None,
        'menu_id': row.menu_id,
        'menu': {
            'id': row.menu.id,
            'menu_name': row.menu.menu_name,
            'menu_icon': row.menu.menu_icon,
            'route': row.menu.route,
        } if row.menu else None,
        **{name: bool(getattr(row, name)) for name in CAPABILITIES},
    }


def find_permission(db: Session, role: Role | str, resource_path: str) -> Permission | None:
    clean_role = parse_role(role)
    if clean_role is None:
        return None
    return (
        db.query(Permission)
        .join(RoleRecord, RoleRecord.id == Permission.role_id)
        .join(Menu, Menu.id == Permission.menu_id)
        .filter(
            RoleRecord.role_name == clean_role.value,
            Menu.route == resource_path,
        )
        .order_by(Permission.id.desc())
        .first()
    )


def has_capability(db: Session, role: Role | str, resource_path: str, capability: str) -> bool:
    if capability not in CAPABILITIES:
        raise ValidationError(f'Unknown capability: {capability}')
    row = find_permission(db, role, resource_path)
    if row is None:
        return False
    return bool(getattr(row, capability))


def set_capabilities(db: Session, permission_id: int, flags: dict[str, Any]) -> dict[str, Any]:
    row = db.query(Permission).filter(Permission.id == permission_id).first()
    if not row:
        raise NotFoundError('Permission not found')
    for name, value in _clean_flags(flags).items():
        setattr(row, name, value)
    commit_or_raise(db, operation='permission')
    db.refresh(row)
    logger.info('permission_updated id=%s role_id=%s menu_id=%s', row.id, row.role_id, row.menu_id)
    return _serialize_permission(row)


def create_permission_row(db: Session, *, role_id: int, menu_id: int, flags: dict[str, Any]) -> dict[str, Any]:
    if not db.query(RoleRecord).filter(RoleRecord.id == role_id).first():
        raise NotFoundError('Role not found')
    row = Permission(role_id=role_id, menu_id=menu_id, **_clean_flags(flags))
    db.add(row)
    commit_or_raise(db, operation='permission')
    db.refresh(row)
    logger.info('permission_created id=%s role_id=%s menu_id=%s', row.id, role_id, menu_id)
    return _serialize_permission(row)


def list_permissions(db: Session) -> list[dict[str, Any]]:
    rows = (
        db.query(Permission)
        .options(selectinload(Permission.role), selectinload(Permission.menu))
        .order_by(Permission.role_id.asc(), Permission.menu_id.asc(), Permission.id.asc())
        .all()
    )
    return [_serialize_permission(row) for row in rows]


def list_roles(db: Session) -> list[dict[str, Any]]:
    roles = (
        db.query(RoleRecord)
        .options(selectinload(RoleRecord.permissions).selectinload(Permission.menu))
        .order_by(RoleRecord.id.asc())
        .all()
    )
    return [
        {
            'id': role.id,
            'role_name': role.role_name,
            'permissions': [_serialize_permission(row) for row in role.permissions],
        }
        for role in roles
    ]


def create_role(db: Session, role_name: str, permissions: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    clean_name = (role_name or '').strip().lower()
    if not clean_name:
        raise ValidationError('role_name is required')
    if db.query(RoleRecord).filter(RoleRecord.role_name == clean_name).first():
        raise ValidationError('Role already exists')

    role = RoleRecord(role_name=clean_name)
    db.add(role)
    db.flush()
    for item in permissions or []:
        db.add(Permission(role_id=role.id, menu_id=int(item['menu_id']), **_clean_flags(item)))
    commit_or_raise(db, operation='role')
    db.refresh(role)
    logger.info('role_created id=%s name=%s permissions=%s', role.id, role.role_name, len(permissions or []))
    return {'id': role.id, 'role_name': role.role_name}


def replace_role_permissions(db: Session, role_id: int, permissions: list[dict[str, Any]]) -> int:
    if not db.query(RoleRecord).filter(RoleRecord.id == role_id).first():
        raise NotFoundError('Role not found')
    db.query(Permission).filter(Permission.role_id == role_id).delete(synchronize_session='fetch')
    for item in permissions:
        db.add(Permission(role_id=role_id, menu_id=int(item['menu_id']), **_clean_flags(item)))
    commit_or_raise(db, operation='role permissions')
    logger.info('role_permissions_replaced role_id=%s count=%s', role_id, len(permissions))
    return len(permissions)


def list_menus(db: Session) -> list[dict[str, Any]]:
    return [
        {'id': row.id, 'menu_name': row.menu_name, 'menu_icon': row.menu_icon, 'route': row.route}
        for row in db.query(Menu).order_by(Menu.id.asc()).all()
    ]


def create_menu(db: Session, *, menu_name: str, menu_icon: str, route: str) -> dict[str, Any]:
    if not (menu_name or '').strip() or not (route or '').strip():
        raise ValidationError('menu_name and route are required')
    row = Menu(menu_name=menu_name.strip(), menu_icon=(menu_icon or '').strip(), route=route.strip())
    db.add(row)
    commit_or_raise(db, operation='menu')
    db.refresh(row)
    return {'id': row.id, 'menu_name': row.menu_name, 'menu_icon': row.menu_icon, 'route': row.route}


def readable_menus_for_user(db: Session, user_id: int) -> list[dict[str, Any]]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError('User not found')
    rows = (
        db.query(Permission)
        .options(selectinload(Permission.role), selectinload(Permission.menu))
        .filter(Permission.role_id == user.role_id, Permission.read.is_(True))
        .order_by(Permission.menu_id.asc())
        .all()
    )
    return [_serialize_permission(row) for row in rows]
