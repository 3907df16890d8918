from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventRecordPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: int | str | None = None
    phantom_id: str | None = Field(default=None, alias='$PhantomId')
    class_type: str | None = None
    student_name: int | str | None = None
    resourceId: int | str | None = None
    class_status: str | None = None
    payment_status: str | None = None
    startDate: datetime | None = None
    endDate: datetime | None = None
    recurrenceRule: str | None = None


class EventRefPayload(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int | str


class EventBatchPayload(BaseModel):
    added: list[EventRecordPayload] = Field(default_factory=list)
    updated: list[EventRecordPayload] = Field(default_factory=list)
    removed: list[EventRefPayload] = Field(default_factory=list)


class AssignmentRecordPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: int | str | None = None
    phantom_id: str | None = Field(default=None, alias='$PhantomId')
    eventId: int | str | None = None
    resourceId: int | str | None = None


class AssignmentBatchPayload(BaseModel):
    added: list[AssignmentRecordPayload] = Field(default_factory=list)


class CalendarSyncRequest(BaseModel):
    events: EventBatchPayload | None = None
    assignments: AssignmentBatchPayload | None = None


class AvailabilityCreateRequest(BaseModel):
    teacher_id: int
    startDate: datetime
    endDate: datetime
    recurrenceRule: str | None = None

    @model_validator(mode='after')
    def _check_order(self):
        if self.endDate <= self.startDate:
            raise ValueError('endDate must be after startDate')
        return self


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    first_name: str
    last_name: str = ''
    email: str
    password: str


class UserCreateRequest(BaseModel):
    first_name: str
    last_name: str = ''
    email: str
    password: str
    note: str = ''


class UserRoleUpdateRequest(BaseModel):
    role_id: int


class UserStatusUpdateRequest(BaseModel):
    is_active: bool


class CapabilityFlags(BaseModel):
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False
    download: bool = False


class PermissionItem(CapabilityFlags):
    menu_id: int


class PermissionCreateRequest(PermissionItem):
    role_id: int


class RoleCreateRequest(BaseModel):
    role_name: str
    permissions: list[PermissionItem] = Field(default_factory=list)


class RolePermissionsRequest(BaseModel):
    permissions: list[PermissionItem] = Field(default_factory=list)


class MenuCreateRequest(BaseModel):
    menu_name: str
    menu_icon: str = ''
    route: str


class ClassTypeCreateRequest(BaseModel):
    name: str


class TeacherRateItem(BaseModel):
    class_type_id: int
    rate: float = Field(ge=0)


class TeacherRatesRequest(BaseModel):
    rates: list[TeacherRateItem]


class PaymentCreateRequest(BaseModel):
    student_id: int
    class_type_id: int
    amount: float = Field(ge=0)
    num_lessons: int = Field(ge=0)
    payment_method: str
    payment_date: date


class SalaryReportRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    teacher_id: int | None = None


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    newPassword: str


class UserProfileUpdateRequest(BaseModel):
    first_name: str
    last_name: str = ''
    email: str
    password: str | None = None
    note: str | None = None


class UserEmailUpdateRequest(BaseModel):
    email: str


class UserPasswordUpdateRequest(BaseModel):
    password: str


class ClassTypeUpdateRequest(BaseModel):
    name: str


class PaymentUpdateRequest(BaseModel):
    class_type_id: int | None = None
    amount: float | None = Field(default=None, ge=0)
    num_lessons: int | None = Field(default=None, ge=0)
    payment_method: str | None = None
    payment_date: date | None = None


class WordCreateRequest(BaseModel):
    student_id: int
    teacher_id: int
    english_word: str
    translation_word: str


class WordUpdateRequest(BaseModel):
    english_word: str | None = None
    translation_word: str | None = None


class ClassInfoCreateRequest(BaseModel):
    student_id: int
    teacher_id: int
    course: str
    unit: str
    class_date: date
    can_do: str = ''
    notes: str = ''


class ClassInfoUpdateRequest(BaseModel):
    course: str | None = None
    unit: str | None = None
    class_date: date | None = None
    can_do: str | None = None
    notes: str | None = None
