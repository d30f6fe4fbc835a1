"""
Assignment Routes
Staff: create tests/tasks, issue passwords, mark and moderate, results reporting
Students: password check, start/retake, submit answers
"""

from flask import Blueprint, request, jsonify, g, send_file, abort
import logging

from database import get_session
from auth_routes import require_session
from assignment_models import Assignment, AssignmentResult
from assignment_helpers import (
    create_assignment, update_assignment, delete_assignment,
    regenerate_assignment_password, validate_assignment_password,
    verify_test_status, start_attempt, submit_assignment, submit_score,
    update_question_and_answer, get_result_for_marking, list_group_results,
    pending_counts, parse_object_id
)
from models import Student

logger = logging.getLogger(__name__)

assignment_bp = Blueprint('assignments', __name__)


def _error_status(message):
    return 404 if 'not found' in (message or '').lower() else 400


def _students_only():
    if not g.session_user.is_student:
        return jsonify({'success': False, 'error': 'Only students can take assignments'}), 403
    return None


# ===== STAFF: ASSIGNMENTS =====

@assignment_bp.route('/api/assignments', methods=['POST'])
@require_session(['create_tests_tasks'], api=True)
def api_create_assignment():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'JSON body required'}), 400

    session_db = get_session()
    try:
        result = create_assignment(session_db, data, lecturer_id=g.session_user.id)
        if not result['success']:
            return jsonify(result), 400
        return jsonify(result), 201
    finally:
        session_db.close()


@assignment_bp.route('/api/assignments', methods=['GET'])
@require_session(['view_tests_tasks'], api=True)
def api_list_assignments():
    session_db = get_session()
    try:
        query = session_db.query(Assignment)
        group_id = parse_object_id(request.args.get('intakeGroup'))
        if group_id:
            query = query.filter(Assignment.intake_groups.any(id=group_id))
        assignments = query.order_by(Assignment.available_from.desc()).all()
        return jsonify({'success': True, 'data': [a.to_dict(include_password=True) for a in assignments]})
    except Exception as e:
        logger.error(f"Error listing assignments: {e}")
        return jsonify({'success': False, 'error': 'Failed to load assignments'}), 500
    finally:
        session_db.close()


@assignment_bp.route('/api/assignments/<assignment_id>', methods=['GET'])
@require_session(['view_tests_tasks'], api=True)
def api_get_assignment(assignment_id):
    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid assignment ID'}), 400

    session_db = get_session()
    try:
        assignment = session_db.query(Assignment).filter_by(id=parsed_id).first()
        if not assignment:
            return jsonify({'success': False, 'error': 'Assignment not found'}), 404
        data = assignment.to_dict(include_password=True)
        data['questions'] = [q.to_dict(include_answer=True) for q in assignment.questions]
        return jsonify({'success': True, 'data': data})
    finally:
        session_db.close()


@assignment_bp.route('/api/assignments/<assignment_id>', methods=['PUT'])
@require_session(['edit_tests_tasks'], api=True)
def api_update_assignment(assignment_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'JSON body required'}), 400

    session_db = get_session()
    try:
        result = update_assignment(session_db, assignment_id, data)
        if not result['success']:
            return jsonify(result), _error_status(result['error'])
        return jsonify(result)
    finally:
        session_db.close()


@assignment_bp.route('/api/assignments/<assignment_id>', methods=['DELETE'])
@require_session(['delete_tests_tasks'], api=True)
def api_delete_assignment(assignment_id):
    session_db = get_session()
    try:
        result = delete_assignment(session_db, assignment_id)
        if not result['success']:
            return jsonify(result), _error_status(result['error'])
        return jsonify({'success': True, 'message': 'Assignment deleted'})
    finally:
        session_db.close()


@assignment_bp.route('/api/assignments/<assignment_id>/password', methods=['POST'])
@require_session(['edit_tests_tasks'], api=True)
def api_regenerate_password(assignment_id):
    session_db = get_session()
    try:
        result = regenerate_assignment_password(session_db, assignment_id)
        if not result['success']:
            return jsonify(result), _error_status(result['error'])
        return jsonify(result)
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error regenerating password: {e}")
        return jsonify({'success': False, 'error': 'Failed to regenerate password'}), 500
    finally:
        session_db.close()


# ===== STUDENT: TAKING AN ASSIGNMENT =====

@assignment_bp.route('/api/assignments/<assignment_id>/validate-password', methods=['POST'])
@require_session(api=True)
def api_validate_password(assignment_id):
    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        result = validate_assignment_password(session_db, assignment_id, data.get('password'))
    finally:
        session_db.close()

    if result['message'] == 'Invalid assignment ID':
        return jsonify(result), 400
    if result['message'] == 'Assignment not found':
        return jsonify(result), 404
    return jsonify(result)


@assignment_bp.route('/api/assignments/<assignment_id>/status', methods=['GET'])
@require_session(api=True)
def api_test_status(assignment_id):
    denied = _students_only()
    if denied:
        return denied

    parsed_id = parse_object_id(assignment_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid assignment ID'}), 400

    session_db = get_session()
    try:
        result = verify_test_status(session_db, parsed_id, g.session_user.id)
    finally:
        session_db.close()
    return jsonify(result), 500 if result['error'] else 200


@assignment_bp.route('/api/assignments/<assignment_id>/start', methods=['POST'])
@require_session(api=True)
def api_start_attempt(assignment_id):
    denied = _students_only()
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        result = start_attempt(session_db, assignment_id, g.session_user.id, data.get('password'))
        if not result['success']:
            return jsonify(result), _error_status(result['error'])

        assignment = session_db.query(Assignment).filter_by(id=parse_object_id(assignment_id)).first()
        result['assignment'] = assignment.to_dict()
        result['questions'] = [q.to_dict() for q in assignment.questions]
        return jsonify(result), 200 if result['resumed'] else 201
    finally:
        session_db.close()


@assignment_bp.route('/api/results/<result_id>/submit', methods=['POST'])
@require_session(api=True)
def api_submit_attempt(result_id):
    denied = _students_only()
    if denied:
        return denied

    data = request.get_json(silent=True)
    answers = data.get('answers') if isinstance(data, dict) else None
    if not isinstance(answers, list):
        return jsonify({'success': False, 'error': 'answers must be a list'}), 400

    session_db = get_session()
    try:
        result = submit_assignment(session_db, result_id, g.session_user.id, answers)
        if not result['success']:
            return jsonify(result), _error_status(result['error'])
        return jsonify(result)
    finally:
        session_db.close()


# ===== STAFF: MARKING =====

@assignment_bp.route('/api/results/<result_id>', methods=['GET'])
@require_session(['view_mark_tests_tasks'], api=True)
def api_result_for_marking(result_id):
    session_db = get_session()
    try:
        data = get_result_for_marking(session_db, result_id)
        if not data:
            return jsonify({'success': False, 'error': 'Assignment result not found'}), 404
        return jsonify({'success': True, 'data': data})
    finally:
        session_db.close()


@assignment_bp.route('/api/results/<result_id>/score', methods=['POST'])
@require_session(['mark_tests_tasks'], api=True)
def api_submit_score(result_id):
    data = request.get_json(silent=True) or {}
    scores = data.get('scores')
    if not isinstance(scores, dict) or not scores:
        return jsonify({'success': False, 'error': 'scores must be a non-empty mapping'}), 400

    session_db = get_session()
    try:
        record = session_db.query(AssignmentResult).filter_by(id=parse_object_id(result_id)).first()
        if not record:
            return jsonify({'success': False, 'error': 'Assignment result not found'}), 404

        result = submit_score(
            session_db, record.id, scores, g.session_user.id,
            record.assignment.assignment_type,
            expected_version=data.get('expectedVersion')
        )
        if not result['success']:
            status = 409 if result.get('conflict') else 400
            return jsonify(result), status
        return jsonify(result)
    finally:
        session_db.close()


@assignment_bp.route('/api/questions/<int:question_id>/answers/<int:answer_id>', methods=['PUT'])
@require_session(['moderate_tests_tasks'], api=True)
def api_update_question_and_answer(question_id, answer_id):
    data = request.get_json(silent=True) or {}
    if 'score' not in data:
        return jsonify({'success': False, 'error': 'score is required'}), 400

    session_db = get_session()
    try:
        result = update_question_and_answer(
            session_db, question_id, answer_id, data.get('question') or {}, data['score']
        )
        if not result['success']:
            return jsonify(result), _error_status(result['error'])
        return jsonify(result)
    finally:
        session_db.close()


# ===== REPORTING =====

@assignment_bp.route('/api/intake-groups/<int:group_id>/results', methods=['GET'])
@require_session(['view_results'], api=True)
def api_group_results(group_id):
    session_db = get_session()
    try:
        return jsonify({'success': True, 'data': list_group_results(session_db, group_id)})
    except Exception as e:
        logger.error(f"Error fetching results for intake group {group_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to load results'}), 500
    finally:
        session_db.close()


@assignment_bp.route('/api/intake-groups/<int:group_id>/pending-count', methods=['GET'])
@require_session(['view_mark_tests_tasks'], api=True)
def api_pending_count(group_id):
    session_db = get_session()
    try:
        return jsonify({'success': True, 'data': pending_counts(session_db, group_id)})
    except Exception as e:
        logger.error(f"Error counting results for intake group {group_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to count results'}), 500
    finally:
        session_db.close()


@assignment_bp.route('/students/<int:student_id>/statement-of-results')
@require_session(['view_results_sor'])
def statement_of_results(student_id):
    """Download a student's statement of results as PDF"""
    from results_report import build_statement_of_results

    session_db = get_session()
    try:
        student = session_db.query(Student).filter_by(id=student_id).first()
        if not student:
            abort(404)
        buffer = build_statement_of_results(session_db, student)
    finally:
        session_db.close()

    return send_file(buffer, as_attachment=True,
                     download_name=f"statement_of_results_{student.admission_number or student.id}.pdf",
                     mimetype='application/pdf')
