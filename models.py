"""
Portal Models
Accounts, roles/permissions, login sessions and the shared academic entities
(campuses, intake groups, outcomes, events, accommodations)
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Numeric,
    Enum, JSON, Table, Index
)
from sqlalchemy.orm import declarative_base, relationship
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
import enum
import secrets

Base = declarative_base()

MAX_RESET_CODE_ATTEMPTS = 5


# ===== ENUMS =====

class UserType(enum.Enum):
    STAFF = "Staff"
    STUDENT = "Student"
    GUARDIAN = "Guardian"


class EventColor(enum.Enum):
    ASSESSMENT = "assessment"
    PRACTICAL = "practical"
    VIDEO = "video"
    NOTICE = "notice"
    THEORY = "theory"
    OTHER = "other"


# ===== ACCOUNT MIXIN =====

class AccountMixin:
    """Password hashing and reset-code handling shared by every account table"""

    username = Column(String(80), nullable=True)
    email = Column(String(120), nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50))
    last_name = Column(String(50))
    avatar = Column(String(500), nullable=True)

    # Password reset code fields
    reset_code = Column(String(6), nullable=True)
    reset_code_expires = Column(DateTime, nullable=True)
    reset_code_attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def generate_reset_code(self, ttl_minutes=15):
        """Generate a 6-digit code for password reset"""
        self.reset_code = f"{secrets.randbelow(900000) + 100000}"
        self.reset_code_expires = datetime.utcnow() + timedelta(minutes=ttl_minutes)
        self.reset_code_attempts = 0
        return self.reset_code

    def verify_reset_code(self, code):
        """
        Check a submitted code; accepts ints from JSON clients. Every wrong
        guess is counted and the code is dropped after MAX_RESET_CODE_ATTEMPTS,
        so the caller must commit on failure too.
        """
        if not self.reset_code or not self.reset_code_expires:
            return False
        if datetime.utcnow() > self.reset_code_expires:
            return False

        submitted = '' if code is None else str(code).strip()
        if secrets.compare_digest(self.reset_code.strip().encode(), submitted.encode()):
            return True

        self.reset_code_attempts = (self.reset_code_attempts or 0) + 1
        if self.reset_code_attempts >= MAX_RESET_CODE_ATTEMPTS:
            self.clear_reset_code()
        return False

    def clear_reset_code(self):
        self.reset_code = None
        self.reset_code_expires = None
        self.reset_code_attempts = 0

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_public_dict(self):
        """User details safe to hand to the browser"""
        return {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'avatar': self.avatar,
            'userType': self.USER_TYPE.value,
            'inactiveReason': getattr(self, 'inactive_reason', None),
        }


# ===== ROLES & PERMISSIONS =====

role_permissions = Table(
    'role_permissions', Base.metadata,
    Column('role_id', Integer, ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
    Column('permission_id', Integer, ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
)

staff_roles = Table(
    'staff_roles', Base.metadata,
    Column('staff_id', Integer, ForeignKey('staff.id', ondelete='CASCADE'), primary_key=True),
    Column('role_id', Integer, ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
)


class Permission(Base):
    __tablename__ = 'permissions'

    id = Column(Integer, primary_key=True)
    slug = Column(String(80), unique=True, nullable=False)
    name = Column(String(120), nullable=False)
    group_name = Column(String(80))

    def __repr__(self):
        return f'<Permission {self.slug}>'


class Role(Base):
    __tablename__ = 'roles'

    id = Column(Integer, primary_key=True)
    name = Column(String(80), unique=True, nullable=False)
    description = Column(Text)

    permissions = relationship("Permission", secondary=role_permissions)

    def __repr__(self):
        return f'<Role {self.name}>'


# ===== ACADEMIC STRUCTURE =====

class Campus(Base):
    __tablename__ = 'campuses'

    id = Column(Integer, primary_key=True)
    title = Column(String(120), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Campus {self.title}>'


class IntakeGroup(Base):
    __tablename__ = 'intake_groups'

    id = Column(Integer, primary_key=True)
    title = Column(String(120), nullable=False)
    campus_id = Column(Integer, ForeignKey('campuses.id'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campus = relationship("Campus")
    students = relationship("Student", back_populates="intake_group")

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'campusId': self.campus_id,
        }

    def __repr__(self):
        return f'<IntakeGroup {self.title}>'


class Outcome(Base):
    __tablename__ = 'outcomes'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    outcome_type = Column(String(50))  # Theory / Practical
    hidden = Column(Boolean, default=False)


# ===== ACCOUNTS =====

class Staff(AccountMixin, Base):
    __tablename__ = 'staff'
    USER_TYPE = UserType.STAFF

    id = Column(Integer, primary_key=True)
    is_active = Column(Boolean, default=True)

    roles = relationship("Role", secondary=staff_roles)

    def __repr__(self):
        return f'<Staff {self.username or self.email}>'


class Student(AccountMixin, Base):
    __tablename__ = 'students'
    USER_TYPE = UserType.STUDENT

    id = Column(Integer, primary_key=True)
    admission_number = Column(String(30), unique=True)
    campus_id = Column(Integer, ForeignKey('campuses.id'), nullable=True)
    intake_group_id = Column(Integer, ForeignKey('intake_groups.id'), nullable=True)

    # Set when portal access is disabled; shown to the student on login
    inactive_reason = Column(String(255), nullable=True)

    campus = relationship("Campus")
    intake_group = relationship("IntakeGroup", back_populates="students")

    def to_summary(self):
        return {
            'id': self.id,
            'admissionNumber': self.admission_number,
            'firstName': self.first_name,
            'lastName': self.last_name,
        }

    def __repr__(self):
        return f'<Student {self.admission_number}>'


class Guardian(AccountMixin, Base):
    __tablename__ = 'guardians'
    USER_TYPE = UserType.GUARDIAN

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey('students.id'), nullable=True)

    student = relationship("Student")


ACCOUNT_MODELS = {
    UserType.STAFF: Staff,
    UserType.STUDENT: Student,
    UserType.GUARDIAN: Guardian,
}


# ===== LOGIN SESSIONS =====

class AuthSession(Base):
    """Server-side record anchoring a login; root of trust for access/refresh tokens"""
    __tablename__ = 'sessions'
    __table_args__ = (
        Index('idx_sessions_user', 'user_id', 'user_type'),
        Index('idx_sessions_expires', 'expires_at'),
    )

    id = Column(Integer, primary_key=True)
    token = Column(String(128), unique=True, nullable=False)
    user_id = Column(Integer, nullable=False)
    user_type = Column(Enum(UserType, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    roles = Column(JSON, default=list)
    permissions = Column(JSON, default=list)
    user_agent = Column(String(255), default='')
    ip = Column(String(64), default='0.0.0.0')
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)

    @property
    def is_expired(self):
        return self.expires_at < datetime.utcnow()

    def to_dict(self):
        return {
            'sessionId': self.token,
            'userId': self.user_id,
            'userType': self.user_type.value,
            'roles': list(self.roles or []),
            'permissions': list(self.permissions or []),
            'expiresAt': self.expires_at.isoformat(),
        }

    def __repr__(self):
        return f'<AuthSession user={self.user_id} ({self.user_type.value})>'


# ===== CALENDAR & HOUSING =====

class Event(Base):
    __tablename__ = 'events'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    details = Column(Text)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    color = Column(Enum(EventColor, values_callable=lambda obj: [e.value for e in obj]), default=EventColor.OTHER)
    location = Column(JSON, default=list)
    assigned_to = Column(JSON, default=list)
    intake_group_id = Column(Integer, ForeignKey('intake_groups.id'), nullable=True)
    outcome_id = Column(Integer, ForeignKey('outcomes.id'), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'details': self.details,
            'startDate': self.start_date.isoformat() if self.start_date else None,
            'endDate': self.end_date.isoformat() if self.end_date else None,
            'color': self.color.value if self.color else None,
            'location': self.location or [],
            'assignedTo': self.assigned_to or [],
            'intakeGroupId': self.intake_group_id,
            'outcomeId': self.outcome_id,
            'createdBy': self.created_by,
        }


class Accommodation(Base):
    __tablename__ = 'accommodations'

    id = Column(Integer, primary_key=True)
    room_number = Column(String(30), nullable=False)
    address = Column(String(255))
    cost_per_bed = Column(Numeric(10, 2), default=0)
    number_of_occupants = Column(Integer, default=0)
    occupant_type = Column(String(30))
    room_type = Column(String(30))
    occupants = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'roomNumber': self.room_number,
            'address': self.address,
            'costPerBed': float(self.cost_per_bed or 0),
            'numberOfOccupants': self.number_of_occupants,
            'occupantType': self.occupant_type,
            'roomType': self.room_type,
            'occupants': self.occupants or [],
        }
