from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import NotAuthenticated
from app.core.router_guard import resolve_token
from app.db import get_db
from app.route_logging import EndpointNameRoute
from app.schemas import ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, SignupRequest
from app.services.auth_service import (
    AuthenticationError,
    clear_session_token,
    issue_session_token,
    login,
    request_password_reset,
    reset_password,
    signup,
)


router = APIRouter(prefix='/api/auth', tags=['Auth'], route_class=EndpointNameRoute)


def _session_cookie_response(data: dict, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={
            'success': True,
            'token': data['token'],
            'user_id': data['user_id'],
            'role': data['role'],
            'expires_at': data['expires_at'],
        },
    )
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env not in ('local', 'test'),
        max_age=60 * 60 * settings.auth_session_expiry_hours,
    )
    return response


@router.post('/login')
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)):
    try:
        data = login(db, payload.email, payload.password)
    except AuthenticationError as exc:
        raise NotAuthenticated(str(exc)) from exc
    return _session_cookie_response(data)


@router.post('/signup')
def auth_signup(payload: SignupRequest, db: Session = Depends(get_db)):
    user = signup(
        db,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password=payload.password,
    )
    return _session_cookie_response(issue_session_token(user), status_code=201)


@router.post('/logout')
def auth_logout(request: Request):
    clear_session_token(resolve_token(request))
    response = JSONResponse({'success': True})
    response.delete_cookie('auth_session')
    return response


@router.post('/forgot-password')
def auth_forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    # same answer for known and unknown addresses
    request_password_reset(db, payload.email)
    return {'success': True, 'message': 'If the account exists, a reset link has been sent'}


@router.post('/reset-password')
def auth_reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    reset_password(db, payload.token, payload.newPassword)
    return {'success': True, 'message': 'Password has been reset'}
