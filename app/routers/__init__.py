from app.routers import auth, availability, calendar, catalog, permissions, reports, student_records, users

__all__ = [
    'auth',
    'availability',
    'calendar',
    'catalog',
    'permissions',
    'reports',
    'student_records',
    'users',
]
