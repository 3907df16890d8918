import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.colors import derive_color
from app.core.errors import NotFoundError, PermissionDenied, ValidationError
from app.core.roles import DEFAULT_ROLE_IDS
from app.db import Base
from app.models import AvailabilityWindow, CalendarEvent, Role, User
from app.schemas import CalendarSyncRequest
from app.services.bootstrap_service import ensure_system_seed
from app.services.calendar_service import (
    build_operations,
    build_sync_response,
    clear_calendar_cache,
    filter_rows_for_viewer,
    load_unified_view,
    reconcile_batch,
)


class CalendarServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_calendar_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_calendar_cache()
        db = self._session_factory()
        try:
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
            db.commit()
            ensure_system_seed(db)
            self.teacher_id = self._add_user(db, 'Tina', 'Teach', Role.TEACHER)
            self.other_teacher_id = self._add_user(db, 'Omar', 'Other', Role.TEACHER)
            self.student_id = self._add_user(db, 'Sam', 'Student', Role.STUDENT)
            self.manager_id = self._add_user(db, 'Mia', 'Manager', Role.MANAGER)
        finally:
            db.close()

    def _add_user(self, db, first_name, last_name, role):
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=f'{first_name.lower()}@school.test',
            role_id=DEFAULT_ROLE_IDS[role],
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user.id

    def _add_event(self, db, *, teacher_id=None, start='2026-03-02 10:00', end='2026-03-02 11:00', **extra):
        event = CalendarEvent(
            student_id=self.student_id,
            teacher_id=teacher_id or self.teacher_id,
            class_type=extra.pop('class_type', 'Regular-Lesson'),
            class_status=extra.pop('class_status', 'scheduled'),
            start_date=datetime.fromisoformat(start),
            end_date=datetime.fromisoformat(end),
            **extra,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event.id

    def _add_window(self, db, *, teacher_id=None, start='2026-03-02 08:00', end='2026-03-02 12:00', rule=None):
        window = AvailabilityWindow(
            teacher_id=teacher_id or self.teacher_id,
            start_date=datetime.fromisoformat(start),
            end_date=datetime.fromisoformat(end),
            recurrence_rule=rule,
        )
        db.add(window)
        db.commit()
        return window.id

    def _sync(self, db, body, *, role='manager', actor_id=None):
        operations = build_operations(CalendarSyncRequest.model_validate(body))
        return reconcile_batch(
            db,
            actor_role=role,
            actor_id=actor_id if actor_id is not None else self.manager_id,
            operations=operations,
        )

    def test_unified_view_projects_teachers_events_and_windows(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db)
            self._add_window(db)
            view = load_unified_view(db, viewer_role='manager', viewer_id=self.manager_id)
        finally:
            db.close()

        resources = {row['id']: row for row in view['resources']}
        self.assertEqual(set(resources), {str(self.teacher_id), str(self.other_teacher_id)})
        self.assertEqual(resources[str(self.teacher_id)]['eventColor'], derive_color('Tina Teach'))

        event = view['events'][0]
        self.assertEqual(event['id'], event_id)
        self.assertEqual(event['name'], 'Sam Student / Regular-Lesson / Not assigned')
        self.assertEqual(event['student_name'], str(self.student_id))
        self.assertEqual(event['resourceId'], str(self.teacher_id))
        self.assertEqual(event['startDate'], '2026-03-02T10:00:00Z')
        self.assertFalse(event['allDay'])

        window = view['availability'][0]
        self.assertEqual(window['name'], "Tina Teach's availability")
        self.assertEqual(window['color'], derive_color('Tina Teach'))

    def test_teacher_sees_only_own_rows(self):
        db = self._session_factory()
        try:
            self._add_event(db)
            self._add_event(db, teacher_id=self.other_teacher_id)
            self._add_window(db)
            self._add_window(db, teacher_id=self.other_teacher_id)
            view = load_unified_view(db, viewer_role='teacher', viewer_id=self.teacher_id)
        finally:
            db.close()

        self.assertEqual([row['id'] for row in view['resources']], [str(self.teacher_id)])
        self.assertEqual({row['resourceId'] for row in view['events']}, {str(self.teacher_id)})
        self.assertEqual({row['teacher_id'] for row in view['availability']}, {self.teacher_id})

    def test_other_roles_get_empty_view(self):
        db = self._session_factory()
        try:
            self._add_event(db)
            for role in ('student', 'accountant', 'janitor'):
                view = load_unified_view(db, viewer_role=role, viewer_id=self.student_id)
                self.assertEqual(view, {'resources': [], 'events': [], 'availability': []})
        finally:
            db.close()

    def test_filter_returns_new_lists(self):
        resources = [{'id': '1'}, {'id': '2'}]
        events = [{'resourceId': '1'}, {'resourceId': '2'}]
        availability = [{'teacher_id': 2}]
        visible = filter_rows_for_viewer(
            viewer_role='teacher',
            viewer_id=2,
            resources=resources,
            events=events,
            availability=availability,
        )
        self.assertEqual(visible['resources'], [{'id': '2'}])
        self.assertEqual(visible['events'], [{'resourceId': '2'}])
        self.assertEqual(len(resources), 2)

        everything = filter_rows_for_viewer(
            viewer_role='admin', viewer_id=0, resources=resources, events=events, availability=availability
        )
        self.assertIsNot(everything['events'], events)
        self.assertEqual(everything['events'], events)

    def test_phantom_ids_map_to_distinct_new_rows(self):
        body = {
            'events': {
                'added': [
                    {
                        '$PhantomId': '_generated1',
                        'student_name': str(self.student_id),
                        'resourceId': str(self.teacher_id),
                        'class_type': 'Trial-Lesson',
                        'startDate': '2026-03-03T09:00:00Z',
                        'endDate': '2026-03-03T09:30:00Z',
                    },
                    {
                        '$PhantomId': '_generated2',
                        'student_name': str(self.student_id),
                        'resourceId': str(self.other_teacher_id),
                        'class_type': 'Regular-Lesson',
                        'payment_status': 'paid',
                        'startDate': '2026-03-04T09:00:00Z',
                        'endDate': '2026-03-04T10:00:00Z',
                    },
                ]
            }
        }
        db = self._session_factory()
        try:
            result = self._sync(db, body)
            response = build_sync_response(result)
            view = load_unified_view(db, viewer_role='admin', viewer_id=self.manager_id)
        finally:
            db.close()

        rows = response['events']['rows']
        self.assertEqual([row['$PhantomId'] for row in rows], ['_generated1', '_generated2'])
        self.assertEqual(len({row['id'] for row in rows}), 2)
        self.assertNotIn('assignments', response)

        by_id = {row['id']: row for row in view['events']}
        second = by_id[rows[1]['id']]
        self.assertEqual(second['resourceId'], str(self.other_teacher_id))
        self.assertEqual(second['payment_status'], 'paid')
        self.assertEqual(second['startDate'], '2026-03-04T09:00:00Z')

    def test_assignments_correlate_by_event_id(self):
        body = {
            'events': {
                'added': [
                    {
                        '$PhantomId': 'ev-a',
                        'student_name': str(self.student_id),
                        'startDate': '2026-03-03T09:00:00Z',
                        'endDate': '2026-03-03T10:00:00Z',
                    },
                    {
                        '$PhantomId': 'ev-b',
                        'student_name': str(self.student_id),
                        'startDate': '2026-03-03T11:00:00Z',
                        'endDate': '2026-03-03T12:00:00Z',
                    },
                ]
            },
            'assignments': {
                'added': [
                    {'$PhantomId': 'as-b', 'eventId': 'ev-b', 'resourceId': str(self.other_teacher_id)},
                    {'$PhantomId': 'as-a', 'eventId': 'ev-a', 'resourceId': str(self.teacher_id)},
                ]
            },
        }
        db = self._session_factory()
        try:
            result = self._sync(db, body)
            events = {row.id: row for row in db.query(CalendarEvent).all()}
        finally:
            db.close()

        event_ids = {row['$PhantomId']: row['id'] for row in result.created_id_map}
        assignment_ids = {row['$PhantomId']: row['id'] for row in result.assignment_id_map}
        self.assertEqual(assignment_ids, {'as-a': event_ids['ev-a'], 'as-b': event_ids['ev-b']})
        self.assertEqual(events[event_ids['ev-a']].teacher_id, self.teacher_id)
        self.assertEqual(events[event_ids['ev-b']].teacher_id, self.other_teacher_id)

    def test_merge_patch_leaves_other_fields_untouched(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db, payment_status='unpaid', recurrence_rule='FREQ=WEEKLY')
            self._add_window(db)
            result = self._sync(db, {'events': {'updated': [{'id': event_id, 'class_status': 'given'}]}})
            event = db.query(CalendarEvent).filter(CalendarEvent.id == event_id).one()
        finally:
            db.close()

        self.assertEqual(result.updated, 1)
        self.assertEqual(event.class_status, 'given')
        self.assertEqual(event.payment_status, 'unpaid')
        self.assertEqual(event.recurrence_rule, 'FREQ=WEEKLY')
        self.assertEqual(event.class_type, 'Regular-Lesson')
        self.assertEqual(event.start_date, datetime(2026, 3, 2, 10, 0))

    def test_manager_cannot_edit_event_outside_availability(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db)
            self._add_window(db, start='2026-03-02 10:30', end='2026-03-02 12:00')
            with self.assertRaises(PermissionDenied):
                self._sync(db, {'events': {'updated': [{'id': event_id, 'class_status': 'given'}]}})
            event = db.query(CalendarEvent).filter(CalendarEvent.id == event_id).one()
            self.assertEqual(event.class_status, 'scheduled')
        finally:
            db.close()

    def test_id_only_update_is_skipped_without_availability_check(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db)
            removable_id = self._add_event(db, start='2026-03-03 10:00', end='2026-03-03 11:00')
            result = self._sync(
                db,
                {'events': {'updated': [{'id': event_id}, {'id': 4242}], 'removed': [{'id': removable_id}]}},
            )
            event = db.query(CalendarEvent).filter(CalendarEvent.id == event_id).one()
            remaining = db.query(CalendarEvent).count()
        finally:
            db.close()
        self.assertEqual(result.updated, 0)
        self.assertEqual(result.removed, 1)
        self.assertEqual(event.class_status, 'scheduled')
        self.assertEqual(remaining, 1)
        self.assertEqual(build_sync_response(result), {'success': True})

    def test_weekly_window_covers_later_weeks(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db, start='2026-03-16 10:00', end='2026-03-16 11:00')
            self._add_window(db, rule='FREQ=WEEKLY;BYDAY=MO')
            result = self._sync(db, {'events': {'updated': [{'id': event_id, 'payment_status': 'paid'}]}})
        finally:
            db.close()
        self.assertEqual(result.updated, 1)

    def test_teacher_is_not_gated_by_availability_but_by_ownership(self):
        db = self._session_factory()
        try:
            own_id = self._add_event(db)
            other_id = self._add_event(db, teacher_id=self.other_teacher_id)
            result = self._sync(
                db,
                {'events': {'updated': [{'id': own_id, 'class_status': 'given'}]}},
                role='teacher',
                actor_id=self.teacher_id,
            )
            self.assertEqual(result.updated, 1)
            with self.assertRaises(PermissionDenied):
                self._sync(
                    db,
                    {'events': {'removed': [{'id': other_id}]}},
                    role='teacher',
                    actor_id=self.teacher_id,
                )
            with self.assertRaises(PermissionDenied):
                self._sync(
                    db,
                    {
                        'events': {
                            'added': [
                                {
                                    '$PhantomId': 'x',
                                    'student_name': str(self.student_id),
                                    'resourceId': str(self.other_teacher_id),
                                    'startDate': '2026-03-05T09:00:00Z',
                                    'endDate': '2026-03-05T10:00:00Z',
                                }
                            ]
                        }
                    },
                    role='teacher',
                    actor_id=self.teacher_id,
                )
            self.assertEqual(db.query(CalendarEvent).count(), 2)
        finally:
            db.close()

    def test_student_cannot_write_calendar(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db)
            with self.assertRaises(PermissionDenied):
                self._sync(db, {'events': {'removed': [{'id': event_id}]}}, role='student', actor_id=self.student_id)
        finally:
            db.close()

    def test_empty_batch_returns_success_only(self):
        db = self._session_factory()
        try:
            self.assertEqual(build_operations(CalendarSyncRequest()), [])
            result = self._sync(db, {'events': {'added': [], 'updated': [], 'removed': []}})
            self.assertEqual(build_sync_response(result), {'success': True})
            self.assertEqual(db.query(CalendarEvent).count(), 0)
        finally:
            db.close()

    def test_failed_batch_leaves_no_partial_effect(self):
        body = {
            'events': {
                'added': [
                    {
                        '$PhantomId': 'p1',
                        'student_name': str(self.student_id),
                        'resourceId': str(self.teacher_id),
                        'startDate': '2026-03-03T09:00:00Z',
                        'endDate': '2026-03-03T10:00:00Z',
                    }
                ],
                'updated': [{'id': 99999, 'class_status': 'given'}],
            }
        }
        db = self._session_factory()
        try:
            with self.assertRaises(NotFoundError):
                self._sync(db, body)
            self.assertEqual(db.query(CalendarEvent).count(), 0)
        finally:
            db.close()

    def test_remove_ignores_missing_ids(self):
        db = self._session_factory()
        try:
            event_id = self._add_event(db)
            result = self._sync(db, {'events': {'removed': [{'id': event_id}, {'id': 4242}]}})
            self.assertEqual(result.removed, 1)
            self.assertEqual(db.query(CalendarEvent).count(), 0)
        finally:
            db.close()

    def test_invalid_payloads_are_rejected(self):
        student = str(self.student_id)
        teacher = str(self.teacher_id)
        duplicate = {
            'events': {
                'added': [
                    {'$PhantomId': 'same', 'student_name': student, 'resourceId': teacher,
                     'startDate': '2026-03-03T09:00:00Z', 'endDate': '2026-03-03T10:00:00Z'},
                    {'$PhantomId': 'same', 'student_name': student, 'resourceId': teacher,
                     'startDate': '2026-03-03T11:00:00Z', 'endDate': '2026-03-03T12:00:00Z'},
                ]
            }
        }
        reversed_interval = {
            'events': {
                'added': [
                    {'$PhantomId': 'r', 'student_name': student, 'resourceId': teacher,
                     'startDate': '2026-03-03T10:00:00Z', 'endDate': '2026-03-03T09:00:00Z'},
                ]
            }
        }
        with self.assertRaises(ValidationError):
            build_operations(CalendarSyncRequest.model_validate(duplicate))
        with self.assertRaises(ValidationError):
            build_operations(CalendarSyncRequest.model_validate(reversed_interval))
        with self.assertRaises(ValidationError):
            build_operations(CalendarSyncRequest.model_validate({'events': {'updated': [{'id': 1, 'student_name': None}]}}))

    def test_unknown_student_is_not_found(self):
        body = {
            'events': {
                'added': [
                    {'$PhantomId': 'p', 'student_name': str(self.teacher_id), 'resourceId': str(self.teacher_id),
                     'startDate': '2026-03-03T09:00:00Z', 'endDate': '2026-03-03T10:00:00Z'},
                ]
            }
        }
        db = self._session_factory()
        try:
            with self.assertRaises(NotFoundError):
                self._sync(db, body)
        finally:
            db.close()

    def test_batch_write_refreshes_cached_view(self):
        db = self._session_factory()
        try:
            before = load_unified_view(db, viewer_role='manager', viewer_id=self.manager_id)
            self.assertEqual(before['events'], [])
            self._sync(
                db,
                {
                    'events': {
                        'added': [
                            {'$PhantomId': 'c', 'student_name': str(self.student_id), 'resourceId': str(self.teacher_id),
                             'startDate': '2026-03-03T09:00:00Z', 'endDate': '2026-03-03T10:00:00Z'},
                        ]
                    }
                },
            )
            after = load_unified_view(db, viewer_role='manager', viewer_id=self.manager_id)
        finally:
            db.close()
        self.assertEqual(len(after['events']), 1)


if __name__ == '__main__':
    unittest.main()
