import json
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from assignment_helpers import (
    COMPETENT, NOT_YET_COMPETENT, auto_score_answers, create_assignment,
    update_assignment, delete_assignment,
    deserialize_scores, pending_counts, regenerate_assignment_password,
    start_attempt, submit_assignment, submit_score, update_question_and_answer,
    validate_assignment_password, verify_test_status, list_group_results,
    student_results, score_matching
)
from assignment_models import (
    Answer, Assignment, AssignmentResult, AssignmentType, Question, QuestionType, ResultStatus
)


def _result(db, assignment, student_id, status, date_taken):
    result = AssignmentResult(assignment_id=assignment.id, student_id=student_id, status=status,
                              date_taken=date_taken)
    db.add(result)
    db.commit()
    return result


# ===== PASSWORD GATE =====

def test_create_assignment_issues_uppercase_password(db, seed):
    outcome = create_assignment(db, {
        "title": "Food Hygiene",
        "type": "task",
        "duration": "45",
        "availableFrom": "2026-01-10T08:00:00Z",
        "intakeGroups": [seed["group_id"]],
        "campus": [seed["campus_id"]],
        "questions": [
            {"text": "Safe fridge temperature?", "type": "short-answer", "mark": 5, "correctAnswer": "5C"},
        ],
    }, lecturer_id=seed["lecturer_id"])

    assert outcome["success"], outcome
    password = outcome["data"]["testPassword"]
    assert len(password) == 8
    assert password == password.upper() and password.isalnum()
    assert outcome["data"]["questionCount"] == 1


@pytest.mark.parametrize("data, error", [
    ({"type": "test", "duration": 10, "availableFrom": "2026-01-01T00:00:00", "questions": [{}]}, "Title is required"),
    ({"title": "T", "type": "exam", "duration": 10}, "Type must be test or task"),
    ({"title": "T", "type": "test", "duration": 0}, "Duration must be a positive number of minutes"),
    ({"title": "T", "type": "test", "duration": 10, "availableFrom": "2026-01-01T00:00:00", "questions": []},
     "At least one question is required"),
])
def test_create_assignment_validation(db, data, error):
    assert create_assignment(db, data) == {"success": False, "error": error}


# ===== EDITING =====

def test_update_assignment_edits_fields_and_question_list(db, seed, make_assignment):
    assignment = make_assignment()
    by_position = {q.position: q for q in assignment.questions}
    kept_id = by_position[0].id
    dropped_id = by_position[3].id

    outcome = update_assignment(db, assignment.id, {
        "title": "Workplace Safety (revised)",
        "duration": 45,
        "campus": [seed["campus_id"]],
        "questions": [
            {"id": kept_id, "text": "Pick the extinguisher for electrical fires", "type": "multiple-choice",
             "mark": 25, "correctAnswer": "CO2", "options": ["Water", "CO2"]},
            {"text": "Fire doors may be wedged open", "type": "true-false", "mark": 5, "correctAnswer": "false"},
        ],
    })

    assert outcome["success"], outcome
    data = outcome["data"]
    assert data["title"] == "Workplace Safety (revised)"
    assert data["duration"] == 45
    assert data["password"] == "ABCD1234"
    assert [q["text"] for q in data["questions"]] == [
        "Pick the extinguisher for electrical fires", "Fire doors may be wedged open",
    ]

    db.expire_all()
    assignment = db.get(Assignment, assignment.id)
    assert assignment.assignment_type == AssignmentType.TEST
    assert [c.id for c in assignment.campuses] == [seed["campus_id"]]
    assert [g.id for g in assignment.intake_groups] == [seed["group_id"]]
    assert db.get(Question, kept_id).correct_answer == "CO2"
    assert db.get(Question, dropped_id) is None


def test_update_assignment_reuses_creation_checks(db, make_assignment):
    assignment = make_assignment()

    assert update_assignment(db, assignment.id, {"duration": 0}) == {
        "success": False, "error": "Duration must be a positive number of minutes"
    }
    assert update_assignment(db, assignment.id, {"questions": []})["error"] == "At least one question is required"
    assert update_assignment(db, assignment.id, {"questions": ["just text"]})["error"] == \
        "Question 1: must be an object"
    assert update_assignment(db, "abc", {})["error"] == "Invalid assignment ID"
    assert update_assignment(db, 999, {})["error"] == "Assignment not found"

    db.refresh(assignment)
    assert assignment.duration == 30
    assert len(assignment.questions) == 5


def test_update_assignment_rejects_foreign_question_ids(db, make_assignment):
    assignment = make_assignment()
    other = make_assignment()
    first = assignment.questions[0]

    outcome = update_assignment(db, assignment.id, {"questions": [
        {"id": first.id, "text": "Renamed", "type": "short-answer", "mark": 5},
        {"id": other.questions[0].id, "text": "Stolen", "type": "short-answer", "mark": 5},
    ]})

    assert outcome == {"success": False, "error": f"Unknown question {other.questions[0].id}"}
    db.expire_all()
    assert db.get(Question, first.id).text == "Pick the extinguisher for oil fires"


def test_answered_questions_cannot_be_removed(db, seed, make_assignment):
    assignment = make_assignment()
    t0 = assignment.password_generated_at + timedelta(minutes=1)
    started = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)
    answered = assignment.questions[0]
    submit_assignment(db, started["resultId"], seed["student_id"], [
        {"questionId": answered.id, "answer": "Foam"},
    ], now=t0 + timedelta(minutes=5))

    outcome = update_assignment(db, assignment.id, {"questions": [
        {"id": q.id, "text": q.text, "type": q.question_type.value, "mark": q.mark}
        for q in assignment.questions[1:]
    ]})

    assert outcome == {"success": False, "error": "Questions that students have answered cannot be removed"}
    db.expire_all()
    assert len(db.get(Assignment, assignment.id).questions) == 5


def test_delete_assignment_refused_once_attempted(db, seed, make_assignment):
    untouched = make_assignment()
    attempted = make_assignment()
    _result(db, attempted, seed["student_id"], ResultStatus.IN_PROGRESS, datetime.utcnow())

    refused = delete_assignment(db, attempted.id)
    assert refused == {"success": False, "error": "Cannot delete: 1 attempt(s) recorded for this assignment"}

    untouched_id = untouched.id
    question_ids = [q.id for q in untouched.questions]
    assert delete_assignment(db, untouched_id) == {"success": True}
    assert db.get(Assignment, untouched_id) is None
    assert db.query(Question).filter(Question.id.in_(question_ids)).count() == 0
    assert delete_assignment(db, untouched_id)["error"] == "Assignment not found"


def test_password_valid_within_window(db, make_assignment):
    assignment = make_assignment()
    now = assignment.password_generated_at + timedelta(minutes=19)

    outcome = validate_assignment_password(db, str(assignment.id), "ABCD1234", now=now)

    assert outcome["valid"] is True
    assert outcome["message"] == "Password valid"
    assert outcome["assignment"]["duration"] == 30


def test_password_expires_after_twenty_minutes_even_when_matching(db, make_assignment):
    assignment = make_assignment()
    now = assignment.password_generated_at + timedelta(minutes=20, seconds=1)

    outcome = validate_assignment_password(db, assignment.id, "ABCD1234", now=now)

    assert outcome == {"valid": False, "message": "Password invalid or expired", "assignment": None}


def test_wrong_password_reveals_nothing(db, make_assignment):
    assignment = make_assignment()
    outcome = validate_assignment_password(db, assignment.id, "abcd1234")
    assert outcome["valid"] is False
    assert outcome["assignment"] is None


def test_password_check_rejects_bad_and_unknown_ids(db):
    assert validate_assignment_password(db, "not-an-id", "X")["message"] == "Invalid assignment ID"
    assert validate_assignment_password(db, "-3", "X")["message"] == "Invalid assignment ID"
    assert validate_assignment_password(db, 99999, "X")["message"] == "Assignment not found"


def test_regenerate_password_rewrites_password_and_timestamp(db, make_assignment):
    assignment = make_assignment(generated_at=datetime.utcnow() - timedelta(hours=1))
    now = datetime.utcnow()

    outcome = regenerate_assignment_password(db, assignment.id, now=now)

    assert outcome["success"]
    db.refresh(assignment)
    assert assignment.password == outcome["password"]
    assert assignment.password_generated_at == now
    assert validate_assignment_password(db, assignment.id, outcome["password"], now=now)["valid"]


# ===== ATTEMPT STATUS =====

def test_completed_result_blocks_regardless_of_regeneration(db, seed, make_assignment):
    assignment = make_assignment()
    _result(db, assignment, seed["student_id"], ResultStatus.COMPLETED,
            assignment.password_generated_at - timedelta(hours=1))
    regenerate_assignment_password(db, assignment.id, now=datetime.utcnow() + timedelta(minutes=1))

    status = verify_test_status(db, assignment.id, seed["student_id"])

    assert status["isCompleted"] is True
    assert status["error"] is None


def test_stale_in_progress_attempt_after_regeneration(db, seed, make_assignment):
    assignment = make_assignment()
    started = assignment.password_generated_at + timedelta(minutes=2)
    _result(db, assignment, seed["student_id"], ResultStatus.IN_PROGRESS, started)

    before = verify_test_status(db, assignment.id, seed["student_id"])
    assert before == {"isCompleted": False, "hasIncompleteAttempt": False, "error": None}

    regenerate_assignment_password(db, assignment.id, now=started + timedelta(minutes=30))
    after = verify_test_status(db, assignment.id, seed["student_id"])
    assert after["hasIncompleteAttempt"] is True
    assert after["isCompleted"] is False


# ===== ATTEMPT LIFECYCLE =====

def test_retake_requires_regenerated_password(db, seed, make_assignment):
    assignment = make_assignment()
    t0 = assignment.password_generated_at + timedelta(minutes=1)

    first = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)
    assert first["success"] and first["resumed"] is False

    again = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0 + timedelta(minutes=2))
    assert again["success"] is False
    assert "already in progress" in again["error"]

    new_password = regenerate_assignment_password(db, assignment.id, now=t0 + timedelta(minutes=5))["password"]
    retake = start_attempt(db, assignment.id, seed["student_id"], new_password, now=t0 + timedelta(minutes=6))
    assert retake["success"] and retake["resumed"] is True
    assert retake["resultId"] == first["resultId"]

    # The regeneration authorizes exactly one retake
    once_more = start_attempt(db, assignment.id, seed["student_id"], new_password, now=t0 + timedelta(minutes=7))
    assert once_more["success"] is False
    assert db.query(AssignmentResult).count() == 1


def test_start_refuses_after_window_closes(db, seed, make_assignment):
    assignment = make_assignment()
    assignment.available_until = assignment.password_generated_at - timedelta(minutes=1)
    db.commit()

    closed = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234",
                           now=assignment.password_generated_at + timedelta(minutes=1))
    assert closed == {"success": False, "error": "Assignment is closed"}


def test_submit_auto_scores_and_moves_to_submitted(db, seed, make_assignment):
    assignment = make_assignment()
    t0 = assignment.password_generated_at + timedelta(minutes=1)
    started = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)
    questions = {q.position: q.id for q in assignment.questions}

    outcome = submit_assignment(db, started["resultId"], seed["student_id"], [
        {"questionId": questions[0], "answer": "foam", "timeSpent": 30},
        {"questionId": questions[1], "answer": False, "timeSpent": 10},
        {"questionId": str(questions[2]), "answer": " osha ", "timeSpent": 20},
        {"questionId": questions[3], "answer": "Walk, do not run.", "timeSpent": 300},
        {"questionId": questions[4], "answer": {"Red": "Prohibition", "Blue": "Warning"}},
    ], now=t0 + timedelta(minutes=25))

    assert outcome["success"], outcome
    data = outcome["data"]
    assert data["status"] == "SUBMITTED"
    assert data["scores"] == {
        str(questions[0]): 20,
        str(questions[1]): 15,
        str(questions[2]): 10,
        str(questions[4]): 10,
    }
    assert db.query(Answer).filter_by(result_id=started["resultId"]).count() == 5

    # Submitted attempts block a fresh start, even with a new password
    new_password = regenerate_assignment_password(db, assignment.id, now=t0 + timedelta(minutes=26))["password"]
    blocked = start_attempt(db, assignment.id, seed["student_id"], new_password, now=t0 + timedelta(minutes=27))
    assert blocked["error"] == "Assignment already submitted"


def test_submit_after_time_limit_is_rejected(db, seed, make_assignment):
    assignment = make_assignment(duration=10)
    t0 = assignment.password_generated_at + timedelta(minutes=1)
    started = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)

    within_grace = submit_assignment(db, started["resultId"], seed["student_id"], [],
                                     now=t0 + timedelta(minutes=10, seconds=59))
    assert within_grace["success"]

    late_assignment = make_assignment(duration=10)
    late_start = start_attempt(db, late_assignment.id, seed["student_id"], "ABCD1234", now=t0)
    late = submit_assignment(db, late_start["resultId"], seed["student_id"], [],
                             now=t0 + timedelta(minutes=11, seconds=1))
    assert late == {"success": False, "error": "Time limit exceeded"}


def test_only_owner_can_submit(db, seed, make_assignment):
    assignment = make_assignment()
    t0 = assignment.password_generated_at + timedelta(minutes=1)
    started = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)

    outcome = submit_assignment(db, started["resultId"], seed["blocked_id"], [], now=t0)
    assert outcome == {"success": False, "error": "Attempt not found"}


@pytest.mark.parametrize("make_answers, error", [
    (lambda ids: ["Foam"], "Answer 1 must be an object"),
    (lambda ids: [{"questionId": ids[0], "answer": "Foam"}, None], "Answer 2 must be an object"),
    (lambda ids: [{"questionId": ids[0], "answer": "Foam", "timeSpent": "12s"}],
     "timeSpent for question {0} must be a whole number of seconds"),
    (lambda ids: [{"questionId": ids[0], "answer": "Foam", "timeSpent": [12]}],
     "timeSpent for question {0} must be a whole number of seconds"),
    (lambda ids: [{"questionId": ids[0], "answer": "Foam", "timeSpent": -5}],
     "timeSpent for question {0} must not be negative"),
])
def test_malformed_answers_leave_attempt_open(db, seed, make_assignment, make_answers, error):
    assignment = make_assignment()
    t0 = assignment.password_generated_at + timedelta(minutes=1)
    started = start_attempt(db, assignment.id, seed["student_id"], "ABCD1234", now=t0)
    ids = [q.id for q in assignment.questions]

    outcome = submit_assignment(db, started["resultId"], seed["student_id"], make_answers(ids),
                                now=t0 + timedelta(minutes=2))

    assert outcome == {"success": False, "error": error.format(ids[0])}
    result = db.get(AssignmentResult, started["resultId"])
    db.refresh(result)
    assert result.status == ResultStatus.IN_PROGRESS
    assert db.query(Answer).filter_by(result_id=result.id).count() == 0


# ===== QUESTION DISPATCH =====

def test_long_answers_are_left_for_manual_marking():
    essay = Question(id=1, question_type=QuestionType.LONG_ANSWER, mark=30)
    truth = Question(id=2, question_type=QuestionType.TRUE_FALSE, mark=5, correct_answer="true")

    assert auto_score_answers([essay, truth], {1: "text"}) == {"2": 0}


def test_matching_awards_proportional_marks():
    question = Question(question_type=QuestionType.MATCHING, mark=9, correct_answer=[
        {"columnA": "a", "columnB": "1"}, {"columnA": "b", "columnB": "2"}, {"columnA": "c", "columnB": "3"},
    ])
    assert score_matching(question, {"a": "1", "b": "2", "c": "1"}) == 6
    assert score_matching(question, "not a mapping") == 0


def test_multi_select_multiple_choice_needs_exact_set():
    question = Question(id=7, question_type=QuestionType.MULTIPLE_CHOICE, mark=4, correct_answer=["A", "C"])
    assert auto_score_answers([question], {7: ["c", "a"]}) == {"7": 4}
    assert auto_score_answers([question], {7: ["A"]}) == {"7": 0}


# ===== MARKING =====

def _submitted_result(db, seed, make_assignment, assignment_type=AssignmentType.TEST):
    assignment = make_assignment(assignment_type=assignment_type)
    return _result(db, assignment, seed["student_id"], ResultStatus.SUBMITTED, datetime.utcnow())


def test_submit_score_competent_test(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)

    outcome = submit_score(db, result.id, {"q1": 20, "q2": 15, "q3": 10}, seed["lecturer_id"], "test")

    assert outcome["success"], outcome
    assert outcome["data"]["totalScore"] == 45
    assert outcome["data"]["percentageScore"] == 45
    assert outcome["data"]["overallOutcome"] == COMPETENT
    assert outcome["data"]["testScore"] == 45
    assert outcome["data"]["taskScore"] is None
    assert outcome["data"]["status"] == "marked"
    assert outcome["data"]["markedBy"] == seed["lecturer_id"]


def test_submit_score_not_yet_competent_task(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment, AssignmentType.TASK)

    outcome = submit_score(db, result.id, {"q1": 20, "q2": 15}, seed["lecturer_id"], AssignmentType.TASK)

    assert outcome["data"]["percentageScore"] == 35
    assert outcome["data"]["overallOutcome"] == NOT_YET_COMPETENT
    assert outcome["data"]["taskScore"] == 35
    assert outcome["data"]["testScore"] is None


def test_percentage_rounds_half_up(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)
    outcome = submit_score(db, result.id, {"q1": 39.5}, seed["lecturer_id"], "test")
    assert outcome["data"]["percentageScore"] == 40
    assert outcome["data"]["overallOutcome"] == COMPETENT


def test_half_marks_are_stored_exactly(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)

    outcome = submit_score(db, result.id, {"q1": 12.5, "q2": 7.25}, seed["lecturer_id"], "test")

    assert outcome["data"]["totalScore"] == 19.75
    assert outcome["data"]["testScore"] == 19.75
    assert outcome["data"]["percentageScore"] == 20
    db.expire_all()
    stored = db.get(AssignmentResult, result.id)
    assert Decimal(str(stored.test_score)) == Decimal("19.75")
    assert stored.to_dict()["testScore"] == 19.75


def test_whole_marks_come_back_as_integers(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)
    submit_score(db, result.id, {"q1": 30, "q2": 15}, seed["lecturer_id"], "test")

    db.expire_all()
    data = db.get(AssignmentResult, result.id).to_dict()
    assert data["testScore"] == 45
    assert isinstance(data["testScore"], int)


def test_moderated_scores_round_trip(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)
    scores = {"q1": 12, "q2": 7.5, "q10": 0}

    outcome = submit_score(db, result.id, scores, seed["lecturer_id"], "test")

    stored = outcome["data"]["moderatedscores"]
    assert isinstance(stored, str)
    assert deserialize_scores(stored) == scores
    assert json.loads(stored) == scores


def test_submit_score_rejects_bad_input(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)

    assert submit_score(db, result.id, {"q1": "ten"}, seed["lecturer_id"], "test") == {
        "success": False, "error": "Scores must be numeric"
    }
    assert submit_score(db, result.id, {"q1": 1}, seed["lecturer_id"], "quiz")["error"] == "Invalid assignment type"
    assert submit_score(db, 424242, {"q1": 1}, seed["lecturer_id"], "test")["error"] == "Assignment result not found"


def test_stale_version_is_rejected(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)
    first = submit_score(db, result.id, {"q1": 30}, seed["lecturer_id"], "test", expected_version=0)
    assert first["success"] and first["data"]["version"] == 1

    stale = submit_score(db, result.id, {"q1": 10}, seed["admin_id"], "test", expected_version=0)

    assert stale["success"] is False
    assert stale["conflict"] is True
    db.refresh(result)
    assert result.test_score == 30
    assert result.marked_by == seed["lecturer_id"]


def test_remark_without_version_overwrites(db, seed, make_assignment):
    result = _submitted_result(db, seed, make_assignment)
    submit_score(db, result.id, {"q1": 30}, seed["lecturer_id"], "test")
    second = submit_score(db, result.id, {"q1": 50}, seed["admin_id"], "test")

    assert second["data"]["testScore"] == 50
    assert second["data"]["version"] == 2


def test_update_question_and_answer_is_all_or_nothing(db, seed, make_assignment):
    assignment = make_assignment()
    question = assignment.questions[3]
    result = _result(db, assignment, seed["student_id"], ResultStatus.SUBMITTED, datetime.utcnow())
    answer = Answer(result_id=result.id, question_id=question.id, answer="essay")
    db.add(answer)
    db.commit()

    ok = update_question_and_answer(db, question.id, answer.id, {"text": "Describe an evacuation", "mark": 25}, 18)
    assert ok == {"success": True}
    db.refresh(question)
    db.refresh(answer)
    assert (question.text, question.mark, answer.score) == ("Describe an evacuation", 25, 18)

    missing = update_question_and_answer(db, question.id, 99999, {"text": "changed"}, 1)
    assert missing["success"] is False
    db.refresh(question)
    assert question.text == "Describe an evacuation"

    half = update_question_and_answer(db, question.id, answer.id, {}, 17.5)
    assert half == {"success": True}
    db.refresh(answer)
    assert Decimal(str(answer.score)) == Decimal("17.5")

    assert update_question_and_answer(db, question.id, answer.id, {}, "ten") == {
        "success": False, "error": "Score must be numeric"
    }


# ===== REPORTING =====

def test_group_reporting(db, seed, make_assignment):
    assignment = make_assignment()
    for status in (ResultStatus.SUBMITTED, ResultStatus.SUBMITTED, ResultStatus.MARKED):
        row = AssignmentResult(assignment_id=assignment.id, student_id=seed["student_id"], status=status,
                               intake_group_id=seed["group_id"], date_taken=datetime(2026, 3, 1, 9, 0))
        db.add(row)
    db.commit()

    counts = pending_counts(db, seed["group_id"])
    assert counts["total"] == 3
    assert counts["pending"] == 2
    assert counts["marked"] == 1
    assert counts["byStatus"] == {"SUBMITTED": 2, "marked": 1}
    assert counts["newestDate"] == "2026-03-01T09:00:00"
    assert counts["groupTitle"] == "Intake 2026 A"

    rows = list_group_results(db, seed["group_id"])
    assert len(rows) == 3
    assert rows[0]["assignmentData"]["title"] == "Workplace Safety"
    assert rows[0]["studentData"]["admissionNumber"] == "S001"

    assert [r.status for r in student_results(db, seed["student_id"])] == [ResultStatus.MARKED]
