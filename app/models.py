from datetime import date, datetime
from enum import Enum
from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class Role(str, Enum):
    STUDENT = 'student'
    TEACHER = 'teacher'
    ACCOUNTANT = 'accountant'
    MANAGER = 'manager'
    ADMIN = 'admin'


class ClassStatus(str, Enum):
    SCHEDULED = 'scheduled'
    GIVEN = 'given'
    NO_SHOW_STUDENT = 'no-show-student'
    NO_SHOW_TEACHER = 'no-show-teacher'


class PaymentStatus(str, Enum):
    PAID = 'paid'
    UNPAID = 'unpaid'
    UNASSIGNED = 'unassigned'


class RoleRecord(Base):
    __tablename__ = 'roles'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    role_name: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    permissions: Mapped[list['Permission']] = relationship('Permission', back_populates='role', cascade='all, delete-orphan')


class Menu(Base):
    __tablename__ = 'menus'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    menu_name: Mapped[str] = mapped_column(String(80))
    menu_icon: Mapped[str] = mapped_column(String(80), default='')
    route: Mapped[str] = mapped_column(String(120), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Permission(Base):
    __tablename__ = 'permissions'
    __table_args__ = (
        Index('ix_permissions_role_menu', 'role_id', 'menu_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    role_id: Mapped[int] = mapped_column(ForeignKey('roles.id'), index=True)
    menu_id: Mapped[int] = mapped_column(ForeignKey('menus.id'), index=True)
    create: Mapped[bool] = mapped_column(Boolean, default=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    update: Mapped[bool] = mapped_column(Boolean, default=False)
    delete: Mapped[bool] = mapped_column(Boolean, default=False)
    download: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role: Mapped['RoleRecord'] = relationship('RoleRecord', back_populates='permissions')
    menu: Mapped['Menu'] = relationship('Menu')


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    first_name: Mapped[str] = mapped_column(String(80))
    last_name: Mapped[str] = mapped_column(String(80), default='')
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    role_id: Mapped[int] = mapped_column(ForeignKey('roles.id'), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    note: Mapped[str] = mapped_column(Text, default='')
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role: Mapped['RoleRecord'] = relationship('RoleRecord')
    rates: Mapped[list['TeacherRate']] = relationship('TeacherRate', back_populates='teacher', cascade='all, delete-orphan')

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'


class ClassType(Base):
    __tablename__ = 'class_types'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class TeacherRate(Base):
    __tablename__ = 'teacher_rates'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'class_type_id', name='uq_teacher_rates_teacher_class_type'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    class_type_id: Mapped[int] = mapped_column(ForeignKey('class_types.id'), index=True)
    rate: Mapped[float] = mapped_column(Float, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher: Mapped['User'] = relationship('User', back_populates='rates')
    class_type: Mapped['ClassType'] = relationship('ClassType')


class Payment(Base):
    __tablename__ = 'payments'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    class_type_id: Mapped[int] = mapped_column(ForeignKey('class_types.id'), index=True)
    amount: Mapped[float] = mapped_column(Float, default=0)
    num_lessons: Mapped[int] = mapped_column(Integer, default=0)
    payment_method: Mapped[str] = mapped_column(String(40), default='')
    payment_date: Mapped[date] = mapped_column(Date, index=True)
    source_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['User'] = relationship('User')
    class_type: Mapped['ClassType'] = relationship('ClassType')


class CalendarEvent(Base):
    __tablename__ = 'calendar_events'
    __table_args__ = (
        Index('ix_calendar_events_teacher_start', 'teacher_id', 'start_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_type: Mapped[str | None] = mapped_column(String(80), nullable=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    class_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_date: Mapped[datetime] = mapped_column(DateTime)
    recurrence_rule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['User'] = relationship('User', foreign_keys=[student_id])
    teacher: Mapped['User'] = relationship('User', foreign_keys=[teacher_id])


class AvailabilityWindow(Base):
    __tablename__ = 'availability_windows'
    __table_args__ = (
        Index('ix_availability_windows_teacher_start', 'teacher_id', 'start_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime)
    end_date: Mapped[datetime] = mapped_column(DateTime)
    recurrence_rule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    teacher: Mapped['User'] = relationship('User')


class Word(Base):
    __tablename__ = 'words'
    __table_args__ = (
        Index('ix_words_student_teacher', 'student_id', 'teacher_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    english_word: Mapped[str] = mapped_column(String(255))
    translation_word: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['User'] = relationship('User', foreign_keys=[student_id])
    teacher: Mapped['User'] = relationship('User', foreign_keys=[teacher_id])


class ClassInfo(Base):
    __tablename__ = 'class_info'
    __table_args__ = (
        Index('ix_class_info_student_date', 'student_id', 'class_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    course: Mapped[str] = mapped_column(String(255))
    unit: Mapped[str] = mapped_column(String(255))
    can_do: Mapped[str] = mapped_column(Text, default='')
    notes: Mapped[str] = mapped_column(Text, default='')
    class_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['User'] = relationship('User', foreign_keys=[student_id])
    teacher: Mapped['User'] = relationship('User', foreign_keys=[teacher_id])
