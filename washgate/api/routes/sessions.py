from flask import Blueprint, request, jsonify
from washgate.services.session_service import SessionService
from washgate.utils.decorators import token_required, staff_required

sessions_bp = Blueprint('sessions', __name__)


@sessions_bp.route('/start', methods=['POST'])
@token_required
@staff_required
def start_session(current_user):
    """Manual start by a warden, for readers that are offline."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get('booking_id'), int):
        return jsonify({'error': 'booking_id is required'}), 400
    wash_session = SessionService.start_session(data['booking_id'])
    return jsonify(wash_session.to_dict()), 201


@sessions_bp.route('/active', methods=['GET'])
@token_required
def get_active(current_user):
    active = SessionService.get_active_session(current_user.id)
    return jsonify({'active': active})


@sessions_bp.route('/history', methods=['GET'])
@token_required
def get_history(current_user):
    return jsonify([s.to_dict() for s in SessionService.get_session_history(current_user.id)])


@sessions_bp.route('/all', methods=['GET'])
@token_required
@staff_required
def get_all(current_user):
    sessions = SessionService.get_all_sessions(
        status=request.args.get('status'),
        machine_code=request.args.get('machine_code'),
    )
    return jsonify([s.to_dict() for s in sessions])


@sessions_bp.route('/<int:session_id>/extend', methods=['POST'])
@token_required
def extend(current_user, session_id):
    wash_session = SessionService.extend_session(session_id, current_user)
    return jsonify(wash_session.to_dict())


@sessions_bp.route('/<int:session_id>/end', methods=['POST'])
@token_required
def end(current_user, session_id):
    wash_session = SessionService.end_session(session_id, actor=current_user)
    return jsonify(wash_session.to_dict())


@sessions_bp.route('/<int:session_id>/pause', methods=['POST'])
@token_required
@staff_required
def pause(current_user, session_id):
    return jsonify(SessionService.pause_session(session_id, actor=current_user).to_dict())


@sessions_bp.route('/<int:session_id>/resume', methods=['POST'])
@token_required
@staff_required
def resume(current_user, session_id):
    return jsonify(SessionService.resume_session(session_id, actor=current_user).to_dict())


@sessions_bp.route('/<int:session_id>/force_stop', methods=['POST'])
@token_required
@staff_required
def force_stop(current_user, session_id):
    return jsonify(SessionService.force_stop_session(session_id, actor=current_user).to_dict())
