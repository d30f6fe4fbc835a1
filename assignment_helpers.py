"""
Assignment Helper Functions
Password gating, attempt tracking, auto-marking, moderation and reporting for tests/tasks
"""

import json
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from numbers import Number

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from assignment_models import (
    Assignment, AssignmentResult, Answer, Question,
    AssignmentType, QuestionType, ResultStatus, score_value
)
from models import Campus, IntakeGroup, Student

logger = logging.getLogger(__name__)

PASSWORD_TTL = timedelta(minutes=20)
PASSWORD_LENGTH = 8
# Percentages are normalised against a fixed 100 points, not the sum of question marks
MAX_POSSIBLE_SCORE = 100
COMPETENT_THRESHOLD = 40
COMPETENT = "Competent"
NOT_YET_COMPETENT = "Not Yet Competent"
SUBMISSION_GRACE = timedelta(seconds=60)
# Marks are stored with two decimal places (half marks and quarter marks)
SCORE_PLACES = Decimal('0.01')


class ConcurrentUpdateError(Exception):
    """Raised when a result changed since the caller last read it"""


# ===== PARSING =====

def parse_object_id(value):
    """Return a positive integer id, or None when the value is not a well-formed id"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def parse_datetime(value):
    """Accept datetimes or ISO-8601 strings; aware values are converted to naive UTC"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ===== PASSWORDS =====

def generate_assignment_password() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(PASSWORD_LENGTH))


def _password_ttl() -> timedelta:
    if has_app_context():
        return timedelta(minutes=current_app.config.get('ASSIGNMENT_PASSWORD_TTL_MINUTES', 20))
    return PASSWORD_TTL


def is_password_fresh(generated_at: datetime, now: datetime = None, ttl: timedelta = PASSWORD_TTL) -> bool:
    if not generated_at:
        return False
    now = now or datetime.utcnow()
    return (now - generated_at) <= ttl


def regenerate_assignment_password(session_db: Session, assignment_id, now: datetime = None) -> dict:
    """Issue a fresh password; also authorizes one retake of an abandoned attempt"""
    now = now or datetime.utcnow()
    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return {'success': False, 'error': 'Invalid assignment ID'}

    assignment = session_db.query(Assignment).filter_by(id=parsed_id).first()
    if not assignment:
        return {'success': False, 'error': 'Assignment not found'}

    assignment.password = generate_assignment_password()
    assignment.password_generated_at = now
    session_db.commit()
    logger.info(f"Password regenerated for assignment {assignment.id}")
    return {
        'success': True,
        'password': assignment.password,
        'passwordGeneratedAt': now.isoformat(),
    }


def validate_assignment_password(session_db: Session, assignment_id, password: str, now: datetime = None) -> dict:
    """
    Check a student-supplied password against the assignment's current one.

    The password has to match exactly and be at most 20 minutes old. On
    success the duration and start time are returned for the countdown.
    """
    now = now or datetime.utcnow()
    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return {'valid': False, 'message': 'Invalid assignment ID'}

    try:
        assignment = session_db.query(Assignment).filter_by(id=parsed_id).first()
        if not assignment:
            return {'valid': False, 'message': 'Assignment not found'}

        password_matches = (
            isinstance(password, str)
            and assignment.password is not None
            and secrets.compare_digest(password, assignment.password)
        )
        is_valid = password_matches and is_password_fresh(assignment.password_generated_at, now, _password_ttl())

        return {
            'valid': is_valid,
            'message': 'Password valid' if is_valid else 'Password invalid or expired',
            'assignment': {
                'duration': assignment.duration,
                'availableFrom': assignment.available_from.isoformat(),
            } if is_valid else None,
        }
    except Exception as e:
        logger.error(f"Error validating assignment password: {e}")
        return {'valid': False, 'message': 'Error validating password'}


# ===== ATTEMPT STATUS =====

def verify_test_status(session_db: Session, assignment_id, student_id) -> dict:
    """
    Two independent facts about a student's attempts:
      isCompleted          - a COMPLETED result exists
      hasIncompleteAttempt - an IN_PROGRESS result exists and the password was
                             regenerated after it was started
    """
    try:
        completed = session_db.query(AssignmentResult).filter_by(
            assignment_id=assignment_id,
            student_id=student_id,
            status=ResultStatus.COMPLETED
        ).first()

        incomplete = session_db.query(AssignmentResult).filter_by(
            assignment_id=assignment_id,
            student_id=student_id,
            status=ResultStatus.IN_PROGRESS
        ).order_by(AssignmentResult.date_taken.desc()).first()

        assignment = session_db.query(Assignment).filter_by(id=assignment_id).first()

        has_incomplete_attempt = False
        if incomplete and assignment and assignment.password_generated_at:
            has_incomplete_attempt = assignment.password_generated_at > incomplete.date_taken

        return {
            'isCompleted': completed is not None,
            'hasIncompleteAttempt': has_incomplete_attempt,
            'error': None,
        }
    except Exception as e:
        logger.error(f"Error verifying test status: {e}")
        return {
            'isCompleted': False,
            'hasIncompleteAttempt': False,
            'error': 'Failed to verify test status',
        }


def start_attempt(session_db: Session, assignment_id, student_id: int, password: str, now: datetime = None) -> dict:
    """Open (or reopen after a password regeneration) a student's attempt"""
    now = now or datetime.utcnow()

    check = validate_assignment_password(session_db, assignment_id, password, now=now)
    if not check['valid']:
        return {'success': False, 'error': check['message']}

    assignment = session_db.query(Assignment).filter_by(id=parse_object_id(assignment_id)).first()
    if now < assignment.available_from:
        return {'success': False, 'error': 'Assignment is not available yet'}
    if assignment.available_until and now > assignment.available_until:
        return {'success': False, 'error': 'Assignment is closed'}

    student = session_db.query(Student).filter_by(id=student_id).first()
    if not student:
        return {'success': False, 'error': 'Student not found'}

    group_ids = [g.id for g in assignment.intake_groups]
    if group_ids and student.intake_group_id not in group_ids:
        return {'success': False, 'error': 'Assignment is not assigned to your intake group'}

    status = verify_test_status(session_db, assignment.id, student.id)
    if status['error']:
        return {'success': False, 'error': status['error']}
    if status['isCompleted']:
        return {'success': False, 'error': 'Assignment already completed'}

    finished = session_db.query(AssignmentResult).filter(
        AssignmentResult.assignment_id == assignment.id,
        AssignmentResult.student_id == student.id,
        AssignmentResult.status.in_([ResultStatus.SUBMITTED, ResultStatus.MARKED])
    ).first()
    if finished:
        return {'success': False, 'error': 'Assignment already submitted'}

    in_progress = session_db.query(AssignmentResult).filter_by(
        assignment_id=assignment.id,
        student_id=student.id,
        status=ResultStatus.IN_PROGRESS
    ).order_by(AssignmentResult.date_taken.desc()).first()

    try:
        if in_progress:
            if not status['hasIncompleteAttempt']:
                return {
                    'success': False,
                    'error': 'An attempt is already in progress. Ask your lecturer for a new password to retake it.',
                }
            # Retake: the regenerated password authorizes exactly one restart
            result = in_progress
            result.date_taken = now
            result.scores = None
            result.answers.clear()
            resumed = True
        else:
            campus_ids = [c.id for c in assignment.campuses]
            result = AssignmentResult(
                assignment_id=assignment.id,
                student_id=student.id,
                campus_id=student.campus_id if student.campus_id in campus_ids or not campus_ids else campus_ids[0],
                intake_group_id=student.intake_group_id,
                status=ResultStatus.IN_PROGRESS,
                date_taken=now,
            )
            session_db.add(result)
            resumed = False

        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Could not start attempt on assignment {assignment.id}: {e}")
        return {'success': False, 'error': 'Could not start attempt'}

    logger.info(f"Student {student.id} started assignment {assignment.id} (resumed={resumed})")
    return {
        'success': True,
        'resultId': result.id,
        'resumed': resumed,
        'duration': assignment.duration,
        'availableFrom': assignment.available_from.isoformat(),
        'deadline': (now + timedelta(minutes=assignment.duration)).isoformat(),
    }


# ===== QUESTION SCORING =====

def _normalize_text(value):
    return ' '.join(str(value).split()).lower()


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def score_multiple_choice(question: Question, answer):
    expected = {_normalize_text(v) for v in _as_list(question.correct_answer)}
    given = {_normalize_text(v) for v in _as_list(answer)}
    return question.mark if given and given == expected else 0


def score_true_false(question: Question, answer):
    if answer is None:
        return 0
    return question.mark if _normalize_text(answer) == _normalize_text(question.correct_answer) else 0


def score_short_answer(question: Question, answer):
    if answer is None or str(answer).strip() == '':
        return 0
    accepted = {_normalize_text(v) for v in _as_list(question.correct_answer)}
    return question.mark if _normalize_text(answer) in accepted else 0


def score_long_answer(question: Question, answer):
    # Free text always goes to a lecturer
    return None


def score_matching(question: Question, answer):
    pairs = _as_list(question.correct_answer)
    if not pairs or not isinstance(answer, dict):
        return 0
    given = {_normalize_text(k): _normalize_text(v) for k, v in answer.items()}
    correct = sum(
        1 for pair in pairs
        if given.get(_normalize_text(pair.get('columnA'))) == _normalize_text(pair.get('columnB'))
    )
    points = Decimal(question.mark) * Decimal(correct) / Decimal(len(pairs))
    return int(points.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


QUESTION_SCORERS = {
    QuestionType.MULTIPLE_CHOICE: score_multiple_choice,
    QuestionType.TRUE_FALSE: score_true_false,
    QuestionType.SHORT_ANSWER: score_short_answer,
    QuestionType.LONG_ANSWER: score_long_answer,
    QuestionType.MATCHING: score_matching,
}


def auto_score_answers(questions, answers_by_question) -> dict:
    """
    Proposed points per question id (string keys) for every auto-markable
    question. Unanswered auto-markable questions score 0; questions that
    need a lecturer are left out.
    """
    proposed = {}
    for question in questions:
        scorer = QUESTION_SCORERS[question.question_type]
        points = scorer(question, answers_by_question.get(question.id))
        if points is not None:
            proposed[str(question.id)] = points
    return proposed


# ===== SUBMISSION =====

def submit_assignment(session_db: Session, result_id, student_id: int, answers, now: datetime = None) -> dict:
    """Store a student's answers with their auto-marked scores and move the attempt to SUBMITTED"""
    now = now or datetime.utcnow()

    result = session_db.query(AssignmentResult).filter_by(id=parse_object_id(result_id)).first()
    if not result or result.student_id != student_id:
        return {'success': False, 'error': 'Attempt not found'}
    if result.status != ResultStatus.IN_PROGRESS:
        return {'success': False, 'error': 'Attempt is not in progress'}

    assignment = result.assignment
    deadline = result.date_taken + timedelta(minutes=assignment.duration) + SUBMISSION_GRACE
    if now > deadline:
        return {'success': False, 'error': 'Time limit exceeded'}

    questions = {q.id: q for q in assignment.questions}
    answers_by_question = {}
    time_spent = {}
    for index, item in enumerate(answers or []):
        if not isinstance(item, dict):
            return {'success': False, 'error': f"Answer {index + 1} must be an object"}
        question_id = parse_object_id(item.get('questionId'))
        if question_id not in questions:
            return {'success': False, 'error': f"Unknown question {item.get('questionId')}"}
        try:
            seconds = int(item.get('timeSpent') or 0)
        except (TypeError, ValueError):
            return {'success': False, 'error': f"timeSpent for question {question_id} must be a whole number of seconds"}
        if seconds < 0:
            return {'success': False, 'error': f"timeSpent for question {question_id} must not be negative"}
        answers_by_question[question_id] = item.get('answer')
        time_spent[question_id] = seconds

    proposed = auto_score_answers(assignment.questions, answers_by_question)

    try:
        for question_id, given in answers_by_question.items():
            result.answers.append(Answer(
                question_id=question_id,
                answer=given,
                time_spent=time_spent[question_id],
                score=proposed.get(str(question_id)),
                answered_at=now,
            ))
        result.scores = proposed
        result.status = ResultStatus.SUBMITTED
        result.submitted_at = now
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Submission failed for result {result.id}: {e}")
        return {'success': False, 'error': str(e)}

    logger.info(f"Result {result.id} submitted with {len(answers_by_question)} answers")
    return {'success': True, 'data': result.to_dict()}


# ===== MARKING =====

def serialize_scores(scores: dict) -> str:
    return json.dumps({str(k): v for k, v in scores.items()}, sort_keys=True)


def deserialize_scores(serialized: str) -> dict:
    return json.loads(serialized) if serialized else {}


def summarize_scores(scores: dict):
    """Return (total, percentage, outcome) for a per-question score mapping"""
    for value in scores.values():
        if isinstance(value, bool) or not isinstance(value, Number):
            raise ValueError('Scores must be numeric')

    total = sum(Decimal(str(value)) for value in scores.values()).quantize(SCORE_PLACES, rounding=ROUND_HALF_UP)
    percentage = total / Decimal(MAX_POSSIBLE_SCORE) * 100
    percentage_score = int(percentage.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    outcome = COMPETENT if percentage_score >= COMPETENT_THRESHOLD else NOT_YET_COMPETENT
    return total, percentage_score, outcome


def submit_score(session_db: Session, result_id, scores: dict, staff_id: int, assignment_type,
                 expected_version: int = None, now: datetime = None) -> dict:
    """
    Record a lecturer's (moderated) marks on an attempt.

    The total goes to testScore or taskScore depending on the assignment type,
    the full mapping is stored serialized in moderatedscores and the result
    becomes "marked". Passing expected_version turns the write into a
    compare-and-swap on the result's version counter.
    """
    now = now or datetime.utcnow()
    try:
        if not isinstance(scores, dict):
            return {'success': False, 'error': 'Scores must be a mapping of question to points'}

        try:
            assignment_type = AssignmentType(getattr(assignment_type, 'value', assignment_type))
        except ValueError:
            return {'success': False, 'error': 'Invalid assignment type'}

        total, percentage_score, outcome = summarize_scores(scores)
        serialized = serialize_scores(scores)

        parsed_id = parse_object_id(result_id)
        result = session_db.query(AssignmentResult).filter_by(id=parsed_id).first()
        if not result:
            return {'success': False, 'error': 'Assignment result not found'}

        values = {
            AssignmentResult.percent: percentage_score,
            AssignmentResult.overall_outcome: outcome,
            AssignmentResult.status: ResultStatus.MARKED,
            AssignmentResult.marked_by: staff_id,
            AssignmentResult.marked_at: now,
            AssignmentResult.moderated_scores: serialized,
            AssignmentResult.version: AssignmentResult.version + 1,
        }
        if assignment_type == AssignmentType.TEST:
            values[AssignmentResult.test_score] = total
        else:
            values[AssignmentResult.task_score] = total

        query = session_db.query(AssignmentResult).filter(AssignmentResult.id == parsed_id)
        if expected_version is not None:
            query = query.filter(AssignmentResult.version == expected_version)
        if query.update(values, synchronize_session=False) == 0:
            raise ConcurrentUpdateError('Result was modified by someone else; reload and mark again')

        normalized = {str(k): v for k, v in scores.items()}
        for answer in result.answers:
            if str(answer.question_id) in normalized:
                answer.score = normalized[str(answer.question_id)]

        session_db.commit()
        session_db.refresh(result)
    except ConcurrentUpdateError as e:
        session_db.rollback()
        return {'success': False, 'error': str(e), 'conflict': True}
    except Exception as e:
        session_db.rollback()
        logger.error(f"Failed to submit score for result {result_id}: {e}")
        return {'success': False, 'error': str(e)}

    logger.info(f"Result {result.id} marked by staff {staff_id}: {total} ({outcome})")
    return {
        'success': True,
        'data': {
            'id': result.id,
            'totalScore': score_value(total),
            'percentageScore': percentage_score,
            'overallOutcome': outcome,
            'testScore': score_value(result.test_score),
            'taskScore': score_value(result.task_score),
            'status': result.status.value,
            'markedBy': result.marked_by,
            'moderatedscores': result.moderated_scores,
            'version': result.version,
        },
    }


def update_question_and_answer(session_db: Session, question_id: int, answer_id: int,
                               question_changes: dict, answer_score) -> dict:
    """Edit a question and re-score one stored answer as a single all-or-nothing write"""
    if isinstance(answer_score, bool) or not isinstance(answer_score, Number):
        return {'success': False, 'error': 'Score must be numeric'}

    try:
        question = session_db.query(Question).filter_by(id=question_id).first()
        answer = session_db.query(Answer).filter_by(id=answer_id, question_id=question_id).first()
        if not question or not answer:
            return {'success': False, 'error': 'Question or answer not found'}

        if 'text' in question_changes:
            question.text = question_changes['text']
        if 'mark' in question_changes:
            question.mark = int(question_changes['mark'])
        if 'correctAnswer' in question_changes:
            question.correct_answer = question_changes['correctAnswer']
        answer.score = answer_score

        session_db.commit()
        return {'success': True}
    except Exception as e:
        session_db.rollback()
        logger.error(f"Failed to update question {question_id} and answer {answer_id}: {e}")
        return {'success': False, 'error': str(e)}


def get_result_for_marking(session_db: Session, result_id) -> dict:
    """Questions, the student's answers and the current score proposal for one attempt"""
    result = session_db.query(AssignmentResult).options(
        joinedload(AssignmentResult.answers)
    ).filter_by(id=parse_object_id(result_id)).first()
    if not result:
        return None

    answers = {a.question_id: a for a in result.answers}
    proposal = result.moderated_scores_map or dict(result.scores or {})
    return {
        'result': result.to_dict(),
        'assignment': result.assignment.to_dict(),
        'questions': [
            {
                **q.to_dict(include_answer=True),
                'studentAnswer': answers[q.id].answer if q.id in answers else None,
                'answerId': answers[q.id].id if q.id in answers else None,
                'proposedScore': proposal.get(str(q.id)),
            }
            for q in result.assignment.questions
        ],
    }


# ===== ASSIGNMENT CREATION & EDITING =====

def _parse_assignment_fields(data: dict):
    """Validate the assignment-level fields; returns (fields, error)"""
    title = str(data.get('title') or '').strip()
    if not title:
        return None, 'Title is required'

    try:
        assignment_type = AssignmentType(data.get('type'))
    except ValueError:
        return None, 'Type must be test or task'

    try:
        duration = int(data.get('duration') or 0)
    except (TypeError, ValueError):
        duration = 0
    if duration <= 0:
        return None, 'Duration must be a positive number of minutes'

    try:
        available_from = parse_datetime(data.get('availableFrom'))
        available_until = parse_datetime(data.get('availableUntil'))
    except ValueError:
        return None, 'Invalid date'
    if not available_from:
        return None, 'availableFrom is required'
    if available_until and available_until <= available_from:
        return None, 'availableUntil must be after availableFrom'

    return {
        'title': title,
        'assignment_type': assignment_type,
        'duration': duration,
        'available_from': available_from,
        'available_until': available_until,
    }, None


def _parse_question(index: int, raw):
    if not isinstance(raw, dict):
        return None, f"Question {index + 1}: must be an object"
    try:
        question_type = QuestionType(raw.get('type'))
    except ValueError:
        return None, f"Question {index + 1}: unknown type {raw.get('type')!r}"
    text = str(raw.get('text') or '').strip()
    if not text:
        return None, f"Question {index + 1}: text is required"
    try:
        mark = int(raw.get('mark') or 0)
    except (TypeError, ValueError):
        return None, f"Question {index + 1}: mark must be a number"

    return {
        'position': index,
        'text': text,
        'question_type': question_type,
        'mark': mark,
        'correct_answer': raw.get('correctAnswer'),
        'options': raw.get('options') or [],
    }, None


def _parse_questions(raw_questions):
    if not isinstance(raw_questions, list) or not raw_questions:
        return None, 'At least one question is required'

    parsed = []
    for index, raw in enumerate(raw_questions):
        fields, error = _parse_question(index, raw)
        if error:
            return None, error
        parsed.append(fields)
    return parsed, None


def create_assignment(session_db: Session, data: dict, lecturer_id: int = None, now: datetime = None) -> dict:
    """Create an assignment and its questions in one commit, with a fresh access password"""
    now = now or datetime.utcnow()

    fields, error = _parse_assignment_fields(data)
    if error:
        return {'success': False, 'error': error}
    question_fields, error = _parse_questions(data.get('questions'))
    if error:
        return {'success': False, 'error': error}

    try:
        campuses = session_db.query(Campus).filter(Campus.id.in_(data.get('campus') or [])).all()
        groups = session_db.query(IntakeGroup).filter(IntakeGroup.id.in_(data.get('intakeGroups') or [])).all()

        assignment = Assignment(
            password=generate_assignment_password(),
            password_generated_at=now,
            outcome_id=parse_object_id(data.get('outcomeId')),
            lecturer_id=lecturer_id,
            campuses=campuses,
            intake_groups=groups,
            questions=[Question(**q) for q in question_fields],
            **fields
        )
        session_db.add(assignment)
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Assignment creation error: {e}")
        return {'success': False, 'error': str(e)}

    logger.info(f"Created assignment {assignment.id} with {len(question_fields)} questions")
    return {
        'success': True,
        'data': {
            'id': assignment.id,
            'testPassword': assignment.password,
            'questionCount': len(question_fields),
        },
    }


def update_assignment(session_db: Session, assignment_id, data: dict) -> dict:
    """
    Edit an assignment and its question list in one commit.

    Fields missing from data keep their current values. When "questions" is
    given it becomes the full list: entries with an "id" edit that question,
    entries without one are added, and questions left out are removed unless
    a student has already answered them. The access password is untouched.
    """
    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return {'success': False, 'error': 'Invalid assignment ID'}

    assignment = session_db.query(Assignment).filter_by(id=parsed_id).first()
    if not assignment:
        return {'success': False, 'error': 'Assignment not found'}

    current = {
        'title': assignment.title,
        'type': assignment.assignment_type.value,
        'duration': assignment.duration,
        'availableFrom': assignment.available_from,
        'availableUntil': assignment.available_until,
    }
    fields, error = _parse_assignment_fields({**current, **data})
    if error:
        return {'success': False, 'error': error}

    new_questions = None
    if 'questions' in data:
        question_fields, error = _parse_questions(data.get('questions'))
        if error:
            return {'success': False, 'error': error}

        existing = {q.id: q for q in assignment.questions}
        new_questions = []
        for raw, q_fields in zip(data['questions'], question_fields):
            if raw.get('id') is None:
                new_questions.append(Question(**q_fields))
                continue
            question = existing.get(parse_object_id(raw.get('id')))
            if question is None or question in new_questions:
                session_db.rollback()
                return {'success': False, 'error': f"Unknown question {raw.get('id')}"}
            for name, value in q_fields.items():
                setattr(question, name, value)
            new_questions.append(question)

        removed = [qid for qid, q in existing.items() if q not in new_questions]
        if removed:
            answered = session_db.query(Answer).filter(Answer.question_id.in_(removed)).count()
            if answered:
                session_db.rollback()
                return {'success': False, 'error': 'Questions that students have answered cannot be removed'}

    try:
        for name, value in fields.items():
            setattr(assignment, name, value)
        if 'campus' in data:
            assignment.campuses = session_db.query(Campus).filter(Campus.id.in_(data.get('campus') or [])).all()
        if 'intakeGroups' in data:
            assignment.intake_groups = session_db.query(IntakeGroup).filter(
                IntakeGroup.id.in_(data.get('intakeGroups') or [])
            ).all()
        if 'outcomeId' in data:
            assignment.outcome_id = parse_object_id(data.get('outcomeId'))
        if new_questions is not None:
            assignment.questions = new_questions

        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Failed to update assignment {parsed_id}: {e}")
        return {'success': False, 'error': str(e)}

    logger.info(f"Updated assignment {assignment.id}")
    updated = assignment.to_dict(include_password=True)
    updated['questions'] = [q.to_dict(include_answer=True) for q in assignment.questions]
    return {'success': True, 'data': updated}


def delete_assignment(session_db: Session, assignment_id) -> dict:
    """Delete an assignment with its questions; refused once students have attempted it"""
    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return {'success': False, 'error': 'Invalid assignment ID'}

    assignment = session_db.query(Assignment).filter_by(id=parsed_id).first()
    if not assignment:
        return {'success': False, 'error': 'Assignment not found'}

    attempts = session_db.query(AssignmentResult).filter_by(assignment_id=parsed_id).count()
    if attempts:
        return {'success': False, 'error': f'Cannot delete: {attempts} attempt(s) recorded for this assignment'}

    try:
        session_db.delete(assignment)
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Failed to delete assignment {parsed_id}: {e}")
        return {'success': False, 'error': str(e)}

    logger.info(f"Deleted assignment {parsed_id}")
    return {'success': True}


# ===== REPORTING =====

def list_group_results(session_db: Session, intake_group_id: int) -> list:
    results = session_db.query(AssignmentResult).options(
        joinedload(AssignmentResult.assignment),
        joinedload(AssignmentResult.student)
    ).filter_by(intake_group_id=intake_group_id).order_by(AssignmentResult.date_taken.desc()).all()

    return [
        {
            **r.to_dict(),
            'assignmentData': {
                'title': r.assignment.title,
                'type': r.assignment.assignment_type.value,
                'outcomeId': r.assignment.outcome_id,
            },
            'studentData': r.student.to_summary() if r.student else None,
        }
        for r in results
    ]


def pending_counts(session_db: Session, intake_group_id: int) -> dict:
    rows = session_db.query(AssignmentResult.status, func.count(AssignmentResult.id)).filter(
        AssignmentResult.intake_group_id == intake_group_id
    ).group_by(AssignmentResult.status).all()
    by_status = {status.value: count for status, count in rows}

    newest = session_db.query(func.max(AssignmentResult.date_taken)).filter(
        AssignmentResult.intake_group_id == intake_group_id
    ).scalar()
    group = session_db.query(IntakeGroup).filter_by(id=intake_group_id).first()

    return {
        'total': sum(by_status.values()),
        'inProgress': by_status.get(ResultStatus.IN_PROGRESS.value, 0),
        'pending': by_status.get(ResultStatus.SUBMITTED.value, 0),
        'marked': by_status.get(ResultStatus.MARKED.value, 0),
        'completed': by_status.get(ResultStatus.COMPLETED.value, 0),
        'byStatus': by_status,
        'newestDate': newest.isoformat() if newest else None,
        'groupTitle': group.title if group else 'Unknown Group',
    }


def student_results(session_db: Session, student_id: int) -> list:
    """Marked and completed results for a student, oldest first"""
    return session_db.query(AssignmentResult).options(
        joinedload(AssignmentResult.assignment)
    ).filter(
        AssignmentResult.student_id == student_id,
        AssignmentResult.status.in_([ResultStatus.MARKED, ResultStatus.COMPLETED])
    ).order_by(AssignmentResult.date_taken).all()
