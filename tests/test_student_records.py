import tempfile
import unittest
from datetime import date
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.errors import NotFoundError, PermissionDenied, ValidationError, install_error_handlers
from app.core.roles import DEFAULT_ROLE_IDS
from app.db import Base, get_db
from app.models import ClassInfo, Role, User, Word
from app.routers import student_records
from app.services.auth_service import issue_session_token
from app.services.bootstrap_service import ensure_system_seed
from app.services.student_record_service import (
    create_class_info,
    create_word,
    list_class_info,
    list_words,
    update_class_info,
    update_word,
)
from app.services.user_service import delete_user


class StudentRecordTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_student_records.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        app = FastAPI()
        install_error_handlers(app)
        app.include_router(student_records.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
            db.commit()
            ensure_system_seed(db)
            self.ids = {}
            self.headers = {}
            for key, role in (
                ('teacher', Role.TEACHER),
                ('other', Role.TEACHER),
                ('student', Role.STUDENT),
                ('classmate', Role.STUDENT),
                ('manager', Role.MANAGER),
                ('accountant', Role.ACCOUNTANT),
            ):
                user = User(first_name=key.title(), last_name='Person', email=f'{key}@school.test', role_id=DEFAULT_ROLE_IDS[role])
                db.add(user)
                db.commit()
                db.refresh(user)
                self.ids[key] = user.id
                self.headers[key] = {'Authorization': f"Bearer {issue_session_token(user)['token']}"}
        finally:
            db.close()

    def _word(self, db, *, actor='teacher', teacher='teacher', english='apple', translation='manzana'):
        return create_word(
            db,
            actor_role='manager' if actor == 'manager' else 'teacher',
            actor_id=self.ids[actor],
            student_id=self.ids['student'],
            teacher_id=self.ids[teacher],
            english_word=english,
            translation_word=translation,
        )

    def _note(self, db, *, day, teacher='teacher', unit='Unit 1'):
        return create_class_info(
            db,
            actor_role='teacher',
            actor_id=self.ids[teacher],
            student_id=self.ids['student'],
            teacher_id=self.ids[teacher],
            course='General English',
            unit=unit,
            class_date=day,
            can_do=' order food ',
        )

    def test_words_are_listed_per_student_and_teacher(self):
        db = self._session_factory()
        try:
            self._word(db)
            self._word(db, actor='other', teacher='other', english='pear', translation='pera')
            everything = list_words(db, viewer_role='teacher', viewer_id=self.ids['teacher'], student_id=self.ids['student'])
            mine = list_words(
                db,
                viewer_role='teacher',
                viewer_id=self.ids['teacher'],
                student_id=self.ids['student'],
                teacher_id=self.ids['teacher'],
            )
            own = list_words(db, viewer_role='student', viewer_id=self.ids['student'], student_id=self.ids['student'])
            with self.assertRaises(PermissionDenied):
                list_words(db, viewer_role='student', viewer_id=self.ids['classmate'], student_id=self.ids['student'])
        finally:
            db.close()
        self.assertEqual([row['english_word'] for row in everything], ['apple', 'pear'])
        self.assertEqual([row['english_word'] for row in mine], ['apple'])
        self.assertEqual(len(own), 2)

    def test_word_writes_check_the_owning_teacher(self):
        db = self._session_factory()
        try:
            with self.assertRaises(PermissionDenied):
                self._word(db, actor='teacher', teacher='other')
            with self.assertRaises(ValidationError):
                self._word(db, english='  ')
            with self.assertRaises(NotFoundError):
                create_word(
                    db,
                    actor_role='manager',
                    actor_id=self.ids['manager'],
                    student_id=self.ids['teacher'],
                    teacher_id=self.ids['teacher'],
                    english_word='x',
                    translation_word='y',
                )

            row = self._word(db)
            with self.assertRaises(PermissionDenied):
                update_word(db, actor_role='teacher', actor_id=self.ids['other'], word_id=row['id'], english_word='plum')
            updated = update_word(db, actor_role='teacher', actor_id=self.ids['teacher'], word_id=row['id'], translation_word='poma')
            self.assertEqual((updated['english_word'], updated['translation_word']), ('apple', 'poma'))
            by_manager = self._word(db, actor='manager', teacher='other')
            self.assertEqual(by_manager['teacher_id'], self.ids['other'])
            with self.assertRaises(NotFoundError):
                update_word(db, actor_role='admin', actor_id=self.ids['manager'], word_id=4242, english_word='x')
        finally:
            db.close()

    def test_class_info_is_newest_first_and_partially_updated(self):
        db = self._session_factory()
        try:
            older = self._note(db, day=date(2026, 3, 2))
            self._note(db, day=date(2026, 3, 9), unit='Unit 2')
            rows = list_class_info(db, viewer_role='manager', viewer_id=self.ids['manager'], student_id=self.ids['student'])
            self.assertEqual([row['unit'] for row in rows], ['Unit 2', 'Unit 1'])
            self.assertEqual(rows[0]['can_do'], 'order food')
            self.assertEqual(rows[0]['teacher_name'], 'Teacher Person')

            updated = update_class_info(
                db,
                actor_role='teacher',
                actor_id=self.ids['teacher'],
                class_info_id=older['id'],
                changes={'notes': 'homework p.12'},
            )
            self.assertEqual((updated['unit'], updated['notes']), ('Unit 1', 'homework p.12'))
            with self.assertRaises(ValidationError):
                update_class_info(
                    db,
                    actor_role='teacher',
                    actor_id=self.ids['teacher'],
                    class_info_id=older['id'],
                    changes={'course': ''},
                )
            with self.assertRaises(PermissionDenied):
                update_class_info(
                    db,
                    actor_role='teacher',
                    actor_id=self.ids['other'],
                    class_info_id=older['id'],
                    changes={'notes': 'x'},
                )
        finally:
            db.close()

    def test_deleting_a_student_drops_their_records(self):
        db = self._session_factory()
        try:
            self._word(db)
            self._note(db, day=date(2026, 3, 2))
            delete_user(db, self.ids['student'])
            self.assertEqual(db.query(Word).count(), 0)
            self.assertEqual(db.query(ClassInfo).count(), 0)
        finally:
            db.close()

    def test_routes_follow_role_grants(self):
        created = self.client.post(
            '/api/words',
            headers=self.headers['teacher'],
            json={
                'student_id': self.ids['student'],
                'teacher_id': self.ids['teacher'],
                'english_word': 'book',
                'translation_word': 'libro',
            },
        )
        self.assertEqual(created.status_code, 201)
        word_id = created.json()['row']['id']

        self.assertEqual(
            self.client.get('/api/words', params={'student_id': self.ids['student']}, headers=self.headers['student']).json()['rows'][0]['english_word'],
            'book',
        )
        peek = self.client.get('/api/words', params={'student_id': self.ids['student']}, headers=self.headers['classmate'])
        self.assertEqual(peek.status_code, 403)
        self.assertFalse(peek.json()['success'])

        student_write = self.client.put(f'/api/words/{word_id}', headers=self.headers['student'], json={'english_word': 'novel'})
        self.assertEqual(student_write.status_code, 403)
        self.assertEqual(student_write.json()['message'], 'Missing update permission on /words')
        self.assertEqual(
            self.client.get('/api/words', params={'student_id': self.ids['student']}, headers=self.headers['accountant']).status_code,
            403,
        )

        foreign = self.client.put(f'/api/words/{word_id}', headers=self.headers['other'], json={'english_word': 'novel'})
        self.assertEqual(foreign.status_code, 403)
        renamed = self.client.put(f'/api/words/{word_id}', headers=self.headers['teacher'], json={'english_word': 'novel'})
        self.assertEqual(renamed.json()['row']['english_word'], 'novel')

    def test_class_info_routes(self):
        created = self.client.post(
            '/api/class-info',
            headers=self.headers['teacher'],
            json={
                'student_id': self.ids['student'],
                'teacher_id': self.ids['teacher'],
                'course': 'Business English',
                'unit': 'Meetings',
                'class_date': '2026-03-04',
            },
        )
        self.assertEqual(created.status_code, 201)
        row_id = created.json()['row']['id']

        missing_date = self.client.post(
            '/api/class-info',
            headers=self.headers['teacher'],
            json={'student_id': self.ids['student'], 'teacher_id': self.ids['teacher'], 'course': 'x', 'unit': 'y'},
        )
        self.assertEqual(missing_date.status_code, 400)
        self.assertIn('class_date', missing_date.json()['message'])

        moved = self.client.put(f'/api/class-info/{row_id}', headers=self.headers['manager'], json={'class_date': '2026-03-05'})
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.json()['row']['class_date'], '2026-03-05')
        self.assertEqual(moved.json()['row']['course'], 'Business English')

        listing = self.client.get('/api/class-info', params={'student_id': self.ids['student']}, headers=self.headers['student'])
        self.assertEqual([row['unit'] for row in listing.json()['rows']], ['Meetings'])


if __name__ == '__main__':
    unittest.main()
