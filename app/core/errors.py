from __future__ import annotations

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


class SchedulerError(Exception):
    status_code = 500


class ValidationError(SchedulerError, ValueError):
    """Malformed or missing fields in a proposed event, window or record."""

    status_code = 400


class NotFoundError(SchedulerError, LookupError):
    """A referenced student, teacher, event or record does not resolve."""

    status_code = 404


class PermissionDenied(SchedulerError, PermissionError):
    """A capability, ownership or availability check refused the operation."""

    status_code = 403


class NotAuthenticated(SchedulerError, PermissionError):
    """No valid session token came with the request."""

    status_code = 401


class StoreError(SchedulerError, RuntimeError):
    """The backing store was unreachable or rejected the write."""

    status_code = 500


def failure_response(exc: SchedulerError) -> JSONResponse:
    return _failure(exc.status_code, str(exc))


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'success': False, 'message': message},
    )


def describe_validation_errors(errors) -> str:
    parts = []
    for error in errors:
        location = '.'.join(str(part) for part in error.get('loc', ()) if part not in ('body', 'query', 'path'))
        message = str(error.get('msg') or 'invalid value')
        parts.append(f'{location}: {message}' if location else message)
    return '; '.join(parts) or 'Invalid request'


async def _scheduler_error_handler(_request, exc: SchedulerError) -> JSONResponse:
    return failure_response(exc)


async def _request_validation_handler(_request, exc: RequestValidationError) -> JSONResponse:
    return _failure(ValidationError.status_code, describe_validation_errors(exc.errors()))


async def _http_exception_handler(_request, exc: StarletteHTTPException) -> JSONResponse:
    response = _failure(exc.status_code, str(exc.detail))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


def install_error_handlers(app) -> None:
    """Every failure leaves the API as ``{success: false, message}``."""
    app.add_exception_handler(SchedulerError, _scheduler_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
