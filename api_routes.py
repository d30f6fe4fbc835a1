"""
API Routes
Calendar events, accommodations, intake groups and object-storage URLs
"""

from flask import Blueprint, request, jsonify, g
from decimal import Decimal, InvalidOperation
import logging

from database import get_session
from auth_routes import require_session
from assignment_helpers import parse_datetime, parse_object_id
from models import Event, EventColor, Accommodation, IntakeGroup, Student
from storage_helpers import build_file_path, create_upload_url, create_download_url, delete_object

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


# ===== EVENTS =====

def _apply_event_fields(event, data):
    """Copy request fields onto an event; returns an error message or None"""
    if 'title' in data:
        event.title = (data.get('title') or '').strip()
    if 'details' in data:
        event.details = data.get('details')
    try:
        if 'startDate' in data:
            event.start_date = parse_datetime(data.get('startDate'))
        if 'endDate' in data:
            event.end_date = parse_datetime(data.get('endDate'))
    except ValueError:
        return 'Invalid date'
    if 'color' in data:
        try:
            event.color = EventColor(data.get('color'))
        except ValueError:
            return f"color must be one of {', '.join(c.value for c in EventColor)}"
    if 'location' in data:
        event.location = data.get('location') or []
    if 'assignedTo' in data:
        event.assigned_to = data.get('assignedTo') or []
    if 'intakeGroupId' in data:
        event.intake_group_id = parse_object_id(data.get('intakeGroupId'))
    if 'outcomeId' in data:
        event.outcome_id = parse_object_id(data.get('outcomeId'))

    if not event.title:
        return 'Title is required'
    if not event.start_date:
        return 'startDate is required'
    if event.end_date and event.end_date < event.start_date:
        return 'endDate must not be before startDate'
    return None


@api_bp.route('/events', methods=['GET'])
@require_session(api=True)
def list_events():
    session_db = get_session()
    try:
        events = session_db.query(Event).order_by(Event.start_date).all()
        return jsonify({'success': True, 'data': [e.to_dict() for e in events]})
    except Exception as e:
        logger.error(f"Error fetching events: {e}")
        return jsonify({'success': False, 'error': 'Failed to fetch events'}), 500
    finally:
        session_db.close()


@api_bp.route('/events', methods=['POST'])
@require_session(['create_events'], api=True)
def create_event():
    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        event = Event(created_by=g.session_user.id)
        error = _apply_event_fields(event, data)
        if error:
            return jsonify({'success': False, 'error': error}), 400

        session_db.add(event)
        session_db.commit()
        return jsonify({'success': True, 'data': event.to_dict()}), 201
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error creating event: {e}")
        return jsonify({'success': False, 'error': 'Failed to create event'}), 500
    finally:
        session_db.close()


@api_bp.route('/events', methods=['PUT'])
@require_session(['edit_events'], api=True)
def update_event():
    event_id = parse_object_id(request.args.get('id'))
    if event_id is None:
        return jsonify({'success': False, 'error': 'Valid event id is required'}), 400

    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        event = session_db.query(Event).filter_by(id=event_id).first()
        if not event:
            return jsonify({'success': False, 'error': 'Event not found'}), 404

        error = _apply_event_fields(event, data)
        if error:
            session_db.rollback()
            return jsonify({'success': False, 'error': error}), 400

        session_db.commit()
        return jsonify({'success': True, 'data': event.to_dict()})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error updating event {event_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to update event'}), 500
    finally:
        session_db.close()


@api_bp.route('/events', methods=['DELETE'])
@require_session(['delete_events'], api=True)
def delete_event():
    event_id = parse_object_id(request.args.get('id'))
    if event_id is None:
        return jsonify({'success': False, 'error': 'Valid event id is required'}), 400

    session_db = get_session()
    try:
        deleted = session_db.query(Event).filter_by(id=event_id).delete()
        if not deleted:
            return jsonify({'success': False, 'error': 'Event not found'}), 404
        session_db.commit()
        return jsonify({'success': True, 'message': 'Event deleted'})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error deleting event {event_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to delete event'}), 500
    finally:
        session_db.close()


# ===== ACCOMMODATIONS =====

def _apply_accommodation_fields(accommodation, data):
    if 'roomNumber' in data:
        accommodation.room_number = (data.get('roomNumber') or '').strip()
    if 'address' in data:
        accommodation.address = data.get('address')
    if 'costPerBed' in data:
        try:
            accommodation.cost_per_bed = Decimal(str(data.get('costPerBed') or 0))
        except InvalidOperation:
            return 'costPerBed must be a number'
    if 'numberOfOccupants' in data:
        try:
            accommodation.number_of_occupants = int(data.get('numberOfOccupants') or 0)
        except (TypeError, ValueError):
            return 'numberOfOccupants must be a number'
    if 'occupantType' in data:
        accommodation.occupant_type = data.get('occupantType')
    if 'roomType' in data:
        accommodation.room_type = data.get('roomType')
    if 'occupants' in data:
        accommodation.occupants = data.get('occupants') or []

    if not accommodation.room_number:
        return 'roomNumber is required'
    return None


@api_bp.route('/accommodations', methods=['GET'])
@require_session(['view_accommodation'], api=True)
def list_accommodations():
    session_db = get_session()
    try:
        rooms = session_db.query(Accommodation).order_by(Accommodation.room_number).all()
        return jsonify({'success': True, 'data': [r.to_dict() for r in rooms]})
    finally:
        session_db.close()


@api_bp.route('/accommodations', methods=['POST'])
@require_session(['create_accommodation'], api=True)
def create_accommodation():
    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        accommodation = Accommodation()
        error = _apply_accommodation_fields(accommodation, data)
        if error:
            return jsonify({'success': False, 'error': error}), 400

        session_db.add(accommodation)
        session_db.commit()
        return jsonify({'success': True, 'data': accommodation.to_dict()}), 201
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error creating accommodation: {e}")
        return jsonify({'success': False, 'error': 'Failed to create accommodation'}), 500
    finally:
        session_db.close()


@api_bp.route('/accommodations/<accommodation_id>', methods=['GET'])
@require_session(['view_accommodation'], api=True)
def get_accommodation(accommodation_id):
    parsed_id = parse_object_id(accommodation_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid accommodation ID'}), 400

    session_db = get_session()
    try:
        accommodation = session_db.query(Accommodation).filter_by(id=parsed_id).first()
        if not accommodation:
            return jsonify({'success': False, 'error': 'Accommodation not found'}), 404
        return jsonify({'success': True, 'data': accommodation.to_dict()})
    finally:
        session_db.close()


@api_bp.route('/accommodations/<accommodation_id>', methods=['PUT'])
@require_session(['edit_accommodation'], api=True)
def update_accommodation(accommodation_id):
    parsed_id = parse_object_id(accommodation_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid accommodation ID'}), 400

    data = request.get_json(silent=True) or {}
    session_db = get_session()
    try:
        accommodation = session_db.query(Accommodation).filter_by(id=parsed_id).first()
        if not accommodation:
            return jsonify({'success': False, 'error': 'Accommodation not found'}), 404

        error = _apply_accommodation_fields(accommodation, data)
        if error:
            session_db.rollback()
            return jsonify({'success': False, 'error': error}), 400

        session_db.commit()
        return jsonify({'success': True, 'data': accommodation.to_dict()})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error updating accommodation {parsed_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to update accommodation'}), 500
    finally:
        session_db.close()


@api_bp.route('/accommodations/<accommodation_id>', methods=['DELETE'])
@require_session(['delete_accommodation'], api=True)
def delete_accommodation(accommodation_id):
    parsed_id = parse_object_id(accommodation_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid accommodation ID'}), 400

    session_db = get_session()
    try:
        deleted = session_db.query(Accommodation).filter_by(id=parsed_id).delete()
        if not deleted:
            return jsonify({'success': False, 'error': 'Accommodation not found'}), 404
        session_db.commit()
        return '', 204
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error deleting accommodation {parsed_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to delete accommodation'}), 500
    finally:
        session_db.close()


# ===== INTAKE GROUPS =====

@api_bp.route('/intake-groups', methods=['GET'])
@require_session(['view_intake_group'], api=True)
def list_intake_groups():
    session_db = get_session()
    try:
        groups = session_db.query(IntakeGroup).order_by(IntakeGroup.title).all()
        return jsonify({'success': True, 'data': [grp.to_dict() for grp in groups]})
    finally:
        session_db.close()


@api_bp.route('/intake-groups', methods=['POST'])
@require_session(['add_intake_group'], api=True)
def create_intake_group():
    data = request.get_json(silent=True) or {}
    title = (data.get('title') or '').strip()
    if not title:
        return jsonify({'success': False, 'error': 'Title is required'}), 400

    session_db = get_session()
    try:
        group = IntakeGroup(title=title, campus_id=parse_object_id(data.get('campusId')))
        session_db.add(group)
        session_db.commit()
        return jsonify({'success': True, 'data': group.to_dict()}), 201
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error creating intake group: {e}")
        return jsonify({'success': False, 'error': 'Failed to create intake group'}), 500
    finally:
        session_db.close()


@api_bp.route('/intake-groups/<group_id>', methods=['GET'])
@require_session(['view_intake_group'], api=True)
def get_intake_group(group_id):
    parsed_id = parse_object_id(group_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid intake group ID'}), 400

    session_db = get_session()
    try:
        group = session_db.query(IntakeGroup).filter_by(id=parsed_id).first()
        if not group:
            return jsonify({'success': False, 'error': 'Intake group not found'}), 404
        data = group.to_dict()
        data['students'] = [s.to_summary() for s in group.students]
        return jsonify({'success': True, 'data': data})
    finally:
        session_db.close()


@api_bp.route('/intake-groups/<group_id>', methods=['PUT'])
@require_session(['edit_intake_group'], api=True)
def update_intake_group(group_id):
    parsed_id = parse_object_id(group_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid intake group ID'}), 400

    data = request.get_json(silent=True) or {}
    title = (data.get('title') or '').strip()
    if not title:
        return jsonify({'success': False, 'error': 'Title is required'}), 400

    session_db = get_session()
    try:
        group = session_db.query(IntakeGroup).filter_by(id=parsed_id).first()
        if not group:
            return jsonify({'success': False, 'error': 'Intake group not found'}), 404

        group.title = title
        if 'campusId' in data:
            group.campus_id = parse_object_id(data.get('campusId'))
        session_db.commit()
        return jsonify({'success': True, 'data': group.to_dict()})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error updating intake group {parsed_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to update intake group'}), 500
    finally:
        session_db.close()


@api_bp.route('/intake-groups/<group_id>', methods=['DELETE'])
@require_session(['delete_intake_group'], api=True)
def delete_intake_group(group_id):
    parsed_id = parse_object_id(group_id)
    if parsed_id is None:
        return jsonify({'success': False, 'error': 'Invalid intake group ID'}), 400

    session_db = get_session()
    try:
        group = session_db.query(IntakeGroup).filter_by(id=parsed_id).first()
        if not group:
            return jsonify({'success': False, 'error': 'Intake group not found'}), 404

        enrolled = session_db.query(Student).filter_by(intake_group_id=parsed_id).count()
        if enrolled:
            return jsonify({'success': False,
                            'error': f'Cannot delete: {enrolled} student(s) are in this intake group'}), 400

        session_db.delete(group)
        session_db.commit()
        return jsonify({'success': True, 'message': 'Intake group deleted'})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error deleting intake group {parsed_id}: {e}")
        return jsonify({'success': False, 'error': 'Failed to delete intake group'}), 500
    finally:
        session_db.close()


# ===== UPLOADS & DOWNLOADS =====

@api_bp.route('/uploads', methods=['POST'])
@require_session(api=True)
def create_upload():
    data = request.get_json(silent=True) or {}
    file_name = (data.get('fileName') or '').strip()
    content_type = (data.get('contentType') or '').strip()
    folder = (data.get('folder') or 'uploads').strip()

    if not file_name or not content_type:
        return jsonify({'success': False, 'error': 'fileName and contentType are required'}), 400

    file_path = build_file_path(folder, file_name)
    url, error = create_upload_url(file_path, content_type)
    if error:
        return jsonify({'success': False, 'error': 'Failed to generate upload URL'}), 500

    return jsonify({'success': True, 'presignedUrl': url, 'filePath': file_path})


@api_bp.route('/uploads', methods=['DELETE'])
@require_session(['upload_learning_material'], api=True)
def remove_upload():
    data = request.get_json(silent=True) or {}
    file_key = (data.get('fileKey') or '').strip()
    if not file_key:
        return jsonify({'success': False, 'error': 'fileKey is required'}), 400

    if not delete_object(file_key):
        return jsonify({'success': False, 'error': 'Failed to delete file'}), 500
    return jsonify({'success': True})


@api_bp.route('/materials/download', methods=['POST'])
@require_session(api=True)
def download_material():
    data = request.get_json(silent=True) or {}
    file_key = (data.get('fileKey') or '').strip()
    file_name = (data.get('fileName') or '').strip()

    if not file_key or not file_name:
        return jsonify({'error': 'Missing fileKey or fileName'}), 400

    url, error = create_download_url(file_key, file_name)
    if error:
        return jsonify({'error': 'Failed to generate download URL'}), 500
    return jsonify({'signedUrl': url})
