from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.errors import NotAuthenticated, PermissionDenied
from app.db import get_db
from app.services.auth_service import validate_session_token
from app.services.permission_service import Capability, has_capability


def resolve_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return request.cookies.get('auth_session')


def require_auth_user(request: Request) -> dict:
    token = resolve_token(request)
    session = validate_session_token(token)
    if not session:
        raise NotAuthenticated('Unauthorized')
    user_id = int(session.get('user_id') or 0)
    if user_id <= 0:
        raise NotAuthenticated('Unauthorized')
    return {
        'user_id': user_id,
        'role': str(session.get('role') or '').strip().lower(),
        'email': str(session.get('email') or ''),
    }


def require_capability(resource_path: str, capability: Capability) -> Callable[..., dict]:
    def dependency(
        user: dict = Depends(require_auth_user),
        db: Session = Depends(get_db),
    ) -> dict:
        if not has_capability(db, user['role'], resource_path, capability):
            raise PermissionDenied(f'Missing {capability} permission on {resource_path}')
        return user

    return dependency
