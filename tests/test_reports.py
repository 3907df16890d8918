import base64
import csv
import io
import json
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch

import httpx
from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.roles import DEFAULT_ROLE_IDS
from app.db import Base
from app.models import CalendarEvent, ClassType, Payment, Role, TeacherRate, User
from app.services.bootstrap_service import ensure_system_seed
from app.services.mail_service import MailDeliveryError, SendGridClient
from app.services.report_service import (
    DAILY_REPORT_COLUMNS,
    class_stats,
    daily_report_rows,
    post_no_show_adjustments,
    render_csv,
    salary_report,
    send_daily_report,
)


class ReportServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_reports.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
            db.commit()
            ensure_system_seed(db)
            teacher = User(first_name='Tina', last_name='Teach', email='tina@school.test', role_id=DEFAULT_ROLE_IDS[Role.TEACHER])
            student = User(first_name='Sam', last_name='Student', email='sam@school.test', role_id=DEFAULT_ROLE_IDS[Role.STUDENT], note='weekday mornings')
            db.add_all([teacher, student])
            db.commit()
            self.teacher_id = teacher.id
            self.student_id = student.id
            self.class_types = {row.name: row.id for row in db.query(ClassType).all()}
            db.add_all(
                [
                    TeacherRate(teacher_id=teacher.id, class_type_id=self.class_types['Regular-Lesson'], rate=30),
                    TeacherRate(teacher_id=teacher.id, class_type_id=self.class_types['Trial-Lesson'], rate=15),
                    Payment(
                        student_id=student.id,
                        class_type_id=self.class_types['Regular-Lesson'],
                        amount=300,
                        num_lessons=10,
                        payment_method='card',
                        payment_date=date(2026, 3, 1),
                    ),
                    Payment(
                        student_id=student.id,
                        class_type_id=self.class_types['Trial-Lesson'],
                        amount=0,
                        num_lessons=1,
                        payment_method='free',
                        payment_date=date(2026, 3, 1),
                    ),
                ]
            )
            for day, class_type, status in (
                (2, 'Regular-Lesson', 'given'),
                (3, 'Regular-Lesson', 'no-show-student'),
                (4, 'No Show', 'given'),
                (5, 'Trial-Lesson', 'given'),
                (6, 'Regular-Lesson', 'no-show-teacher'),
                (9, 'Regular-Lesson', 'scheduled'),
            ):
                db.add(
                    CalendarEvent(
                        student_id=student.id,
                        teacher_id=teacher.id,
                        class_type=class_type,
                        class_status=status,
                        start_date=datetime(2026, 3, day, 10),
                        end_date=datetime(2026, 3, day, 11),
                    )
                )
            db.commit()
        finally:
            db.close()

    def test_salary_report_groups_by_class_type_without_writing(self):
        db = self._session_factory()
        try:
            report = salary_report(db)
            self.assertEqual(db.query(Payment).count(), 2)
        finally:
            db.close()

        self.assertEqual(len(report), 1)
        stats = {row['class_type']: row for row in report[0]['class_type_stats']}
        self.assertEqual(stats['Regular-Lesson']['total_classes_taught'], 2)
        self.assertEqual(stats['Regular-Lesson']['total_salary'], '60.00')
        self.assertEqual(stats['No Show']['total_salary'], '30.00')
        self.assertEqual(stats['Trial-Lesson']['total_salary'], '15.00')

    def test_salary_report_date_range_is_inclusive(self):
        db = self._session_factory()
        try:
            report = salary_report(db, start_date=date(2026, 3, 3), end_date=date(2026, 3, 4), teacher_id=self.teacher_id)
            other = salary_report(db, teacher_id=4242)
        finally:
            db.close()
        stats = {row['class_type']: row['total_classes_taught'] for row in report[0]['class_type_stats']}
        self.assertEqual(stats, {'Regular-Lesson': 1, 'No Show': 1})
        self.assertEqual(other, [])

    def test_no_show_adjustments_post_once(self):
        db = self._session_factory()
        try:
            first = post_no_show_adjustments(db)
            second = post_no_show_adjustments(db)
            credit = db.query(Payment).filter(Payment.source_event_id.isnot(None)).one()
        finally:
            db.close()
        self.assertEqual(first, {'posted': 1, 'skipped': 0})
        self.assertEqual(second, {'posted': 0, 'skipped': 0})
        self.assertEqual(credit.num_lessons, 1)
        self.assertEqual(credit.amount, 0)
        self.assertEqual(credit.payment_date, date(2026, 3, 6))

    def test_class_stats_balance(self):
        db = self._session_factory()
        try:
            before = class_stats(db)
            post_no_show_adjustments(db)
            after = class_stats(db)
        finally:
            db.close()
        self.assertEqual(
            before,
            [{'id': self.student_id, 'name': 'Sam Student', 'total_classes': 10, 'used_classes': 4, 'remaining_classes': 6}],
        )
        self.assertEqual(after[0]['total_classes'], 11)
        self.assertEqual(after[0]['remaining_classes'], 7)

    def test_daily_report_csv(self):
        db = self._session_factory()
        try:
            rows = daily_report_rows(db)
        finally:
            db.close()
        text = render_csv(DAILY_REPORT_COLUMNS['Students'], rows['Students'])
        parsed = list(csv.reader(io.StringIO(text)))
        self.assertEqual(parsed[0], ['ID', 'Full Name', 'Note', 'Created At', 'Updated At'])
        self.assertEqual(parsed[1][1:3], ['Sam Student', 'weekday mornings'])
        self.assertEqual(len(rows['Lessons']), 6)
        self.assertEqual(rows['Lessons'][0]['class_date'], '02/03/2026')

    @freeze_time('2026-03-10 01:00:00')
    def test_send_daily_report_posts_attachments(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured['url'] = str(request.url)
            captured['auth'] = request.headers.get('authorization')
            captured['body'] = json.loads(request.content)
            return httpx.Response(202)

        client = SendGridClient(
            api_key='SG.test',
            api_base='https://mail.test',
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        db = self._session_factory()
        try:
            with patch('app.services.report_service.settings.report_sender_email', 'noreply@school.test'), patch(
                'app.services.report_service.settings.report_recipient_email', 'owner@school.test'
            ):
                result = send_daily_report(db, client=client)
        finally:
            db.close()

        self.assertTrue(result['sent'])
        self.assertEqual(result['counts']['Lessons'], 6)
        self.assertEqual(captured['url'], 'https://mail.test/v3/mail/send')
        self.assertEqual(captured['auth'], 'Bearer SG.test')
        body = captured['body']
        self.assertEqual(body['personalizations'][0]['to'][0]['email'], 'owner@school.test')
        self.assertIn('Tuesday, March 10, 2026', body['subject'])
        filenames = [item['filename'] for item in body['attachments']]
        self.assertEqual(filenames, ['Students.csv', 'Teachers.csv', 'Lessons.csv', 'Payments.csv'])
        teachers_csv = base64.b64decode(body['attachments'][1]['content']).decode('utf-8')
        self.assertIn('Tina Teach', teachers_csv)


class SendGridClientTests(unittest.TestCase):
    def test_skips_without_api_key(self):
        client = SendGridClient(api_key='')
        result = client.send(sender='a@school.test', recipient='b@school.test', subject='x', html='<p>x</p>')
        self.assertEqual(result, {'sent': False, 'reason': 'missing_api_key'})

    def test_rejected_delivery_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={'errors': []}))
        client = SendGridClient(api_key='SG.bad', http_client=httpx.Client(transport=transport))
        with self.assertRaises(MailDeliveryError):
            client.send(sender='a@school.test', recipient='b@school.test', subject='x', html='<p>x</p>')


if __name__ == '__main__':
    unittest.main()
