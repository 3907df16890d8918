import argparse
import logging

from app.db import Base, SessionLocal, engine
from app.services.bootstrap_service import ensure_system_seed
from app.services.report_service import post_no_show_adjustments, send_daily_report


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create tables, seed roles/menus/class types and run one-off jobs.')
    parser.add_argument('--post-no-shows', action='store_true', help='credit no-show-teacher lessons back to students')
    parser.add_argument('--send-daily-report', action='store_true', help='email the daily CSV export now')
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        logger.info('seed_finished result=%s', ensure_system_seed(db))
        if args.post_no_shows:
            logger.info('no_show_adjustments result=%s', post_no_show_adjustments(db))
        if args.send_daily_report:
            result = send_daily_report(db)
            logger.info('daily_report sent=%s counts=%s', result.get('sent'), result.get('counts'))
    finally:
        db.close()


if __name__ == '__main__':
    main()
