from datetime import datetime, timedelta

import pytest

from main import create_app
from database import get_session
from init_db import seed_permissions, seed_roles
from models import Campus, IntakeGroup, Role, Staff, Student
from assignment_models import Assignment, Question, AssignmentType, QuestionType

PASSWORD = "Secret123"


@pytest.fixture
def app():
    app = create_app("testing")

    session = get_session()
    try:
        seed_permissions(session)
        seed_roles(session)

        campus = Campus(title="Main Campus")
        group = IntakeGroup(title="Intake 2026 A", campus=campus)

        admin = Staff(username="admin", email="admin@college.test", first_name="Ada", last_name="Admin",
                      is_active=True, roles=[session.query(Role).filter_by(name="Administrator").one()])
        lecturer = Staff(username="lecturer", email="lecturer@college.test", first_name="Lee", last_name="Turner",
                         is_active=True, roles=[session.query(Role).filter_by(name="Lecturer").one()])
        disabled = Staff(username="former", email="former@college.test", first_name="Fay", last_name="Former",
                         is_active=False)
        student = Student(username="student1", email="student1@college.test", first_name="Sam", last_name="Student",
                          admission_number="S001", campus=campus, intake_group=group)
        blocked = Student(username="student2", email="student2@college.test", first_name="Bo", last_name="Blocked",
                          admission_number="S002", campus=campus, intake_group=group,
                          inactive_reason="Portal access disabled")

        for account in (admin, lecturer, disabled, student, blocked):
            account.set_password(PASSWORD)

        session.add_all([campus, group, admin, lecturer, disabled, student, blocked])
        session.commit()

        app.config["SEED"] = {
            "campus_id": campus.id,
            "group_id": group.id,
            "admin_id": admin.id,
            "lecturer_id": lecturer.id,
            "student_id": student.id,
            "blocked_id": blocked.id,
        }
    finally:
        session.close()

    yield app


@pytest.fixture
def seed(app):
    return app.config["SEED"]


@pytest.fixture
def db(app):
    with app.app_context():
        session = get_session()
        try:
            yield session
        finally:
            session.close()


@pytest.fixture
def client(app):
    return app.test_client()


def login_as(client, identifier, password=PASSWORD):
    response = client.post("/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200, response.get_json()
    return response


@pytest.fixture
def make_assignment(db, seed):
    """Persist a test with one question of every type; returns the Assignment"""

    def _make(assignment_type=AssignmentType.TEST, duration=30, generated_at=None):
        generated_at = generated_at or datetime.utcnow()
        group = db.get(IntakeGroup, seed["group_id"])
        assignment = Assignment(
            title="Workplace Safety",
            assignment_type=assignment_type,
            duration=duration,
            available_from=generated_at - timedelta(days=1),
            password="ABCD1234",
            password_generated_at=generated_at,
            lecturer_id=seed["lecturer_id"],
            intake_groups=[group],
            questions=[
                Question(position=0, text="Pick the extinguisher for oil fires", mark=20,
                         question_type=QuestionType.MULTIPLE_CHOICE, correct_answer="Foam",
                         options=["Water", "Foam", "Sand"]),
                Question(position=1, text="Gloves are optional when handling bleach", mark=15,
                         question_type=QuestionType.TRUE_FALSE, correct_answer="false"),
                Question(position=2, text="Name the body that enforces workplace safety", mark=10,
                         question_type=QuestionType.SHORT_ANSWER, correct_answer=["OSHA", "Health and Safety Executive"]),
                Question(position=3, text="Describe a safe evacuation plan", mark=30,
                         question_type=QuestionType.LONG_ANSWER),
                Question(position=4, text="Match the sign to its meaning", mark=20,
                         question_type=QuestionType.MATCHING,
                         correct_answer=[{"columnA": "Red", "columnB": "Prohibition"},
                                         {"columnA": "Blue", "columnB": "Mandatory"}]),
            ],
        )
        db.add(assignment)
        db.commit()
        return assignment

    return _make
