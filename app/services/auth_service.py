from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import PermissionDenied, ValidationError
from app.core.roles import RoleRegistry, parse_role
from app.core.time_provider import TimeProvider, default_time_provider
from app.db import commit_or_raise
from app.models import Role, User
from app.services.mail_service import SendGridClient


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)


class AuthenticationError(ValueError):
    """Raised when credentials do not match an active account."""


def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def _mask_email(email: str) -> str:
    local, _, domain = normalize_email(email).partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def hash_password(password: str) -> str:
    if len(password or '') < 8:
        raise ValidationError('Password must be at least 8 characters')
    salt = secrets.token_hex(16)
    iterations = 120000
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations)
    return f'pbkdf2_sha256${iterations}${salt}${derived.hex()}'


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = password_hash.split('$', 3)
        if algo != 'pbkdf2_sha256':
            return False
        iterations = int(iter_raw)
        derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()
        return hmac.compare_digest(derived, digest_hex)
    except ValueError:
        return False


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _encode_jwt(payload: dict) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    signature_part = _b64url_encode(signature)
    return f'{header_part}.{payload_part}.{signature_part}'


def _decode_jwt(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
    except ValueError:
        return None

    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    expected_signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    try:
        provided_signature = _b64url_decode(signature_part)
    except ValueError:
        return None
    if not hmac.compare_digest(provided_signature, expected_signature):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    return payload


def issue_session_token(
    user: User,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    now = time_provider.now()
    expires_at = now + timedelta(hours=settings.auth_session_expiry_hours)
    role = user.role.role_name if user.role else ''
    token = _encode_jwt(
        {
            'sub': user.id,
            'email': user.email,
            'role': role,
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.discard(token)
    return {
        'token': token,
        'user_id': user.id,
        'email': user.email,
        'role': role,
        'expires_at': expires_at.isoformat(),
    }


def signup(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    role: Role = Role.STUDENT,
) -> User:
    clean_email = normalize_email(email)
    if '@' not in clean_email:
        raise ValidationError('A valid email is required')
    if db.query(User).filter(User.email == clean_email).first():
        raise ValidationError('Email already exists')

    registry = RoleRegistry.from_db(db)
    user = User(
        first_name=(first_name or '').strip(),
        last_name=(last_name or '').strip(),
        email=clean_email,
        password_hash=hash_password(password),
        role_id=registry.id_for(role),
        is_active=True,
    )
    db.add(user)
    commit_or_raise(db, operation='user')
    db.refresh(user)
    logger.info('auth_signup user_id=%s role=%s', user.id, role.value)
    return user


def login(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = normalize_email(email)
    user = db.query(User).filter(User.email == clean_email).first()
    if not user or not user.password_hash or not verify_password(password, user.password_hash):
        logger.warning('auth_login_failed email=%s', _mask_email(clean_email))
        raise AuthenticationError('Invalid credentials')
    if not user.is_active:
        logger.warning('auth_login_inactive user_id=%s', user.id)
        raise PermissionDenied('Account is deactivated')
    return issue_session_token(user, time_provider=time_provider)


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _decode_jwt(token)
    if not payload:
        return None

    role = parse_role(payload.get('role'))
    user_id = payload.get('sub')
    if role is None or user_id is None:
        return None
    expires_at = int(payload.get('exp') or 0)
    if expires_at and expires_at <= int(time_provider.now().timestamp()):
        return None

    return {
        'user_id': int(user_id),
        'email': payload.get('email') or '',
        'role': role.value,
    }


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)


def _reset_digest(token: str) -> str:
    return hashlib.sha256((token or '').encode('utf-8')).hexdigest()


def _reset_email_html(link: str) -> str:
    return (
        '<h1>Password Reset Request</h1>'
        '<p>We received a request to reset your password. Use the link below to choose a new one:</p>'
        f'<p><a href="{link}">Reset Password</a></p>'
        f'<p>The link expires in {settings.password_reset_minutes} minutes. '
        'If you did not ask for a reset you can ignore this email.</p>'
    )


def request_password_reset(
    db: Session,
    email: str,
    *,
    client: SendGridClient | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Stores a one-time reset token and mails the link to the account owner.

    Only the token's digest is persisted. The plain token goes out in the
    email and is also returned to the caller; the HTTP layer never echoes it.
    """
    clean_email = normalize_email(email)
    user = db.query(User).filter(User.email == clean_email).first()
    if not user or not user.is_active:
        logger.info('password_reset_unknown email=%s', _mask_email(clean_email))
        return {'sent': False, 'reason': 'unknown_account', 'token': None}

    token = secrets.token_urlsafe(32)
    user.reset_token_hash = _reset_digest(token)
    user.reset_token_expires_at = time_provider.utcnow() + timedelta(minutes=settings.password_reset_minutes)
    commit_or_raise(db, operation='password reset token')

    link = f'{settings.password_reset_url}?token={token}'
    client = client or SendGridClient()
    result = client.send(
        sender=settings.report_sender_email,
        recipient=user.email,
        subject='Password Reset Request',
        html=_reset_email_html(link),
    )
    logger.info('password_reset_requested user_id=%s sent=%s', user.id, result.get('sent'))
    return {**result, 'token': token}


def reset_password(
    db: Session,
    token: str,
    new_password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> None:
    if not token:
        raise ValidationError('Invalid or expired reset token')
    user = db.query(User).filter(User.reset_token_hash == _reset_digest(token)).first()
    if not user or not user.reset_token_expires_at or user.reset_token_expires_at <= time_provider.utcnow():
        raise ValidationError('Invalid or expired reset token')
    user.password_hash = hash_password(new_password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    commit_or_raise(db, operation='password reset')
    logger.info('password_reset_done user_id=%s', user.id)
