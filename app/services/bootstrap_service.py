import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.core.roles import DEFAULT_ROLE_IDS
from app.db import commit_or_raise
from app.models import ClassType, Menu, Permission, Role, RoleRecord, User
from app.services.auth_service import hash_password, normalize_email
from app.services.class_type_service import DEFAULT_CLASS_TYPES


logger = logging.getLogger(__name__)

DEFAULT_MENUS = (
    ('Dashboard', 'home', '/dashboard'),
    ('Calendar', 'calendar', '/calendar'),
    ('Availability', 'clock', '/availability'),
    ('Students', 'users', '/students'),
    ('Teachers', 'user-check', '/teachers'),
    ('Payments', 'credit-card', '/payments'),
    ('Class Types', 'layers', '/class-types'),
    ('Reports', 'bar-chart', '/reports'),
    ('Words', 'book', '/words'),
    ('Class Info', 'clipboard', '/class-info'),
    ('Users', 'user-cog', '/users'),
    ('Permissions', 'shield', '/permissions'),
)

_ALL = 'create,read,update,delete,download'
_CRUD = 'create,read,update,delete'

# role -> {route: comma separated capabilities}; routes left out get no row
DEFAULT_GRANTS: dict[Role, dict[str, str]] = {
    Role.ADMIN: {route: _ALL for _, _, route in DEFAULT_MENUS},
    Role.MANAGER: {
        **{route: _ALL for _, _, route in DEFAULT_MENUS if route != '/permissions'},
        '/permissions': 'read',
    },
    Role.TEACHER: {
        '/dashboard': 'read',
        '/calendar': _CRUD,
        '/availability': _CRUD,
        '/students': 'read',
        '/words': 'create,read,update',
        '/class-info': 'create,read,update',
    },
    Role.ACCOUNTANT: {
        '/dashboard': 'read',
        '/calendar': 'read',
        '/students': 'read',
        '/payments': _ALL,
        '/reports': 'read,download',
    },
    Role.STUDENT: {
        '/dashboard': 'read',
        '/calendar': 'read',
        '/words': 'read',
        '/class-info': 'read',
    },
}


def _seed_roles(db: Session) -> int:
    existing = {row.role_name for row in db.query(RoleRecord).all()}
    created = 0
    for role, role_id in DEFAULT_ROLE_IDS.items():
        if role.value in existing:
            continue
        db.add(RoleRecord(id=role_id, role_name=role.value))
        created += 1
    if created:
        commit_or_raise(db, operation='roles')
    return created


def _seed_menus(db: Session) -> dict[str, int]:
    menus = {row.route: row.id for row in db.query(Menu).all()}
    added = False
    for menu_name, icon, route in DEFAULT_MENUS:
        if route in menus:
            continue
        db.add(Menu(menu_name=menu_name, menu_icon=icon, route=route))
        added = True
    if added:
        commit_or_raise(db, operation='menus')
        menus = {row.route: row.id for row in db.query(Menu).all()}
    return menus


def _seed_permissions(db: Session, menu_ids: dict[str, int]) -> int:
    if db.query(Permission).count() > 0:
        return 0
    role_ids = {row.role_name: row.id for row in db.query(RoleRecord).all()}
    created = 0
    for role, grants in DEFAULT_GRANTS.items():
        role_id = role_ids.get(role.value)
        if role_id is None:
            continue
        for route, capabilities in grants.items():
            flags = {name: True for name in capabilities.split(',')}
            db.add(Permission(role_id=role_id, menu_id=menu_ids[route], **flags))
            created += 1
    commit_or_raise(db, operation='permissions')
    return created


def _seed_class_types(db: Session) -> int:
    existing = {row.name for row in db.query(ClassType).all()}
    missing = [name for name in DEFAULT_CLASS_TYPES if name not in existing]
    for name in missing:
        db.add(ClassType(name=name))
    if missing:
        commit_or_raise(db, operation='class types')
    return len(missing)


def _ensure_bootstrap_admin(db: Session) -> dict:
    email = normalize_email(settings.bootstrap_admin_email)
    if not email or not settings.bootstrap_admin_password:
        return {'ensured': False, 'reason': 'not_configured'}
    if db.query(User).filter(User.email == email).first():
        return {'ensured': True, 'inserted': False}
    admin_role = db.query(RoleRecord).filter(RoleRecord.role_name == Role.ADMIN.value).first()
    db.add(
        User(
            first_name='Admin',
            last_name='',
            email=email,
            password_hash=hash_password(settings.bootstrap_admin_password),
            role_id=admin_role.id,
            is_active=True,
        )
    )
    commit_or_raise(db, operation='bootstrap admin')
    logger.warning('bootstrap_admin_created email=%s - change the password after setup', email)
    return {'ensured': True, 'inserted': True}


def ensure_system_seed(db: Session) -> dict:
    roles = _seed_roles(db)
    menu_ids = _seed_menus(db)
    permissions = _seed_permissions(db, menu_ids)
    class_types = _seed_class_types(db)
    admin = _ensure_bootstrap_admin(db)
    logger.info(
        'system_seed roles=%s menus=%s permissions=%s class_types=%s admin=%s',
        roles,
        len(menu_ids),
        permissions,
        class_types,
        admin.get('inserted', False),
    )
    return {
        'roles_created': roles,
        'permissions_created': permissions,
        'class_types_created': class_types,
        'admin': admin,
    }
