"""
Assignment Models
Password-gated tests/tasks, their questions, and student attempts (results + answers)
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, Table, Numeric,
    Enum as SQLEnum, Index
)
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum
import json
from models import Base


# ===== ENUMS =====

class AssignmentType(enum.Enum):
    """Kind of assignment; decides which score field a mark lands in"""
    TEST = "test"
    TASK = "task"


class QuestionType(enum.Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    LONG_ANSWER = "long-answer"
    MATCHING = "matching"


class ResultStatus(enum.Enum):
    """Attempt lifecycle: IN_PROGRESS -> SUBMITTED -> marked / COMPLETED"""
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    COMPLETED = "COMPLETED"
    MARKED = "marked"


def _values(enum_cls):
    return [e.value for e in enum_cls]


def score_value(value):
    """Stored mark as JSON-friendly number: int when whole, float for half marks"""
    if value is None:
        return None
    value = Decimal(str(value))
    return int(value) if value == value.to_integral_value() else float(value)


assignment_campuses = Table(
    'assignment_campuses', Base.metadata,
    Column('assignment_id', Integer, ForeignKey('assignments.id', ondelete='CASCADE'), primary_key=True),
    Column('campus_id', Integer, ForeignKey('campuses.id', ondelete='CASCADE'), primary_key=True),
)

assignment_intake_groups = Table(
    'assignment_intake_groups', Base.metadata,
    Column('assignment_id', Integer, ForeignKey('assignments.id', ondelete='CASCADE'), primary_key=True),
    Column('intake_group_id', Integer, ForeignKey('intake_groups.id', ondelete='CASCADE'), primary_key=True),
)


# ===== MODELS =====

class Assignment(Base):
    """A test or task guarded by a shared, time-boxed access password"""
    __tablename__ = 'assignments'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    assignment_type = Column(SQLEnum(AssignmentType, values_callable=_values), nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    available_from = Column(DateTime, nullable=False)
    available_until = Column(DateTime, nullable=True)

    password = Column(String(20), nullable=False)
    password_generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    outcome_id = Column(Integer, ForeignKey('outcomes.id'), nullable=True)
    lecturer_id = Column(Integer, ForeignKey('staff.id'), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campuses = relationship("Campus", secondary=assignment_campuses)
    intake_groups = relationship("IntakeGroup", secondary=assignment_intake_groups)
    questions = relationship("Question", back_populates="assignment",
                             cascade="all, delete-orphan", order_by="Question.position")
    results = relationship("AssignmentResult", back_populates="assignment", cascade="all, delete-orphan")
    lecturer = relationship("Staff")
    outcome = relationship("Outcome")

    def to_dict(self, include_password=False):
        data = {
            'id': self.id,
            'title': self.title,
            'type': self.assignment_type.value,
            'duration': self.duration,
            'availableFrom': self.available_from.isoformat() if self.available_from else None,
            'availableUntil': self.available_until.isoformat() if self.available_until else None,
            'campus': [c.id for c in self.campuses],
            'intakeGroups': [g.id for g in self.intake_groups],
            'outcomeId': self.outcome_id,
            'questionCount': len(self.questions),
        }
        if include_password:
            data['password'] = self.password
            data['passwordGeneratedAt'] = self.password_generated_at.isoformat()
        return data

    def __repr__(self):
        return f"<Assignment {self.title} ({self.assignment_type.value})>"


class Question(Base):
    __tablename__ = 'questions'

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, default=0)
    text = Column(Text, nullable=False)
    question_type = Column(SQLEnum(QuestionType, values_callable=_values), nullable=False)
    mark = Column(Integer, default=0)
    # str for single answers, list for multi-select, list of {columnA, columnB} pairs for matching
    correct_answer = Column(JSON)
    options = Column(JSON, default=list)

    assignment = relationship("Assignment", back_populates="questions")

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'text': self.text,
            'type': self.question_type.value,
            'mark': self.mark,
            'options': self.options or [],
        }
        if include_answer:
            data['correctAnswer'] = self.correct_answer
        return data


class AssignmentResult(Base):
    """One student's attempt at an assignment"""
    __tablename__ = 'assignment_results'
    __table_args__ = (
        Index('idx_result_assignment_student', 'assignment_id', 'student_id'),
        Index('idx_result_intake_group', 'intake_group_id'),
        Index('idx_result_status', 'status'),
    )

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False)
    student_id = Column(Integer, ForeignKey('students.id', ondelete='CASCADE'), nullable=False)
    campus_id = Column(Integer, ForeignKey('campuses.id'), nullable=True)
    intake_group_id = Column(Integer, ForeignKey('intake_groups.id'), nullable=True)

    status = Column(SQLEnum(ResultStatus, values_callable=_values),
                    default=ResultStatus.IN_PROGRESS, nullable=False)
    date_taken = Column(DateTime, default=datetime.utcnow, nullable=False)
    submitted_at = Column(DateTime, nullable=True)

    # Raw auto-marked per-question scores, {question_id: points}
    scores = Column(JSON, nullable=True)
    # Staff-moderated per-question scores, serialized JSON mapping
    moderated_scores = Column('moderatedscores', Text, nullable=True)
    test_score = Column(Numeric(6, 2), nullable=True)
    task_score = Column(Numeric(6, 2), nullable=True)
    percent = Column(Integer, nullable=True)
    overall_outcome = Column(String(30), nullable=True)

    marked_by = Column(Integer, ForeignKey('staff.id'), nullable=True)
    marked_at = Column(DateTime, nullable=True)
    feedback = Column(Text, nullable=True)

    # Bumped on every mark; used for compare-and-swap updates
    version = Column(Integer, default=0, nullable=False)

    assignment = relationship("Assignment", back_populates="results")
    student = relationship("Student")
    answers = relationship("Answer", back_populates="result", cascade="all, delete-orphan")

    @property
    def moderated_scores_map(self):
        if not self.moderated_scores:
            return {}
        return json.loads(self.moderated_scores)

    def to_dict(self):
        return {
            'id': self.id,
            'assignment': self.assignment_id,
            'student': self.student_id,
            'intakeGroup': self.intake_group_id,
            'status': self.status.value,
            'dateTaken': self.date_taken.isoformat() if self.date_taken else None,
            'scores': self.scores,
            'moderatedscores': self.moderated_scores,
            'testScore': score_value(self.test_score),
            'taskScore': score_value(self.task_score),
            'percent': self.percent,
            'overallOutcome': self.overall_outcome,
            'markedBy': self.marked_by,
            'version': self.version,
        }

    def __repr__(self):
        return f"<AssignmentResult {self.id} {self.status.value}>"


class Answer(Base):
    __tablename__ = 'answers'

    id = Column(Integer, primary_key=True)
    result_id = Column(Integer, ForeignKey('assignment_results.id', ondelete='CASCADE'), nullable=False)
    question_id = Column(Integer, ForeignKey('questions.id', ondelete='CASCADE'), nullable=False)
    answer = Column(JSON)
    time_spent = Column(Integer, default=0)  # seconds
    score = Column(Numeric(6, 2), nullable=True)
    answered_at = Column(DateTime, default=datetime.utcnow)

    result = relationship("AssignmentResult", back_populates="answers")
    question = relationship("Question")
