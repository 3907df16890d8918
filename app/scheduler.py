import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.metrics import run_timed_job
from app.services.report_service import send_daily_report


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def _with_db(task):
    db: Session = SessionLocal()
    try:
        return task(db)
    finally:
        db.close()


def _run_job(label: str, task):
    return run_timed_job(label, lambda: _with_db(task))


def daily_report_job():
    return _run_job('daily_report', lambda db: send_daily_report(db))


def start_scheduler():
    if not settings.enable_daily_report:
        logger.info('scheduler_disabled reason=enable_daily_report_false')
        return
    hour = min(23, max(0, int(settings.daily_report_hour)))
    scheduler.add_job(daily_report_job, 'cron', hour=hour, minute=0, id='daily_report', replace_existing=True)
    if not scheduler.running:
        scheduler.start()


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
