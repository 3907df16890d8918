from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from app.config import settings
from app.core.errors import install_error_handlers
from app.db import Base, SessionLocal, engine
from app.metrics import flush_cache_metrics
from app.route_logging import EndpointNameRoute
from app.routers import auth, availability, calendar, catalog, permissions, reports, student_records, users
from app.scheduler import start_scheduler, stop_scheduler
from app.services.bootstrap_service import ensure_system_seed

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_system_seed(db)
    finally:
        db.close()
    start_scheduler()
    yield
    stop_scheduler()
    flush_cache_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
install_error_handlers(app)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('app.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(calendar.router)
app.include_router(availability.router)
app.include_router(users.router)
app.include_router(catalog.router)
app.include_router(permissions.router)
app.include_router(reports.router)
app.include_router(student_records.router)


@app.get('/')
def health():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
