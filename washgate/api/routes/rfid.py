from flask import Blueprint, request, jsonify
from washgate.models import User
from washgate.services.access_gate import AccessGate
from washgate.utils.decorators import token_required, staff_required

rfid_bp = Blueprint('rfid', __name__)


@rfid_bp.route('/scan', methods=['POST'])
def scan():
    """Called by the reader bridge, not by browsers; no token."""
    data = request.get_json(silent=True) or {}
    credential_id = data.get('credentialId') or data.get('rfidUID')
    machine_code = data.get('machineId')
    result = AccessGate.scan(credential_id, machine_code)
    return jsonify(result.to_dict()), result.http_status


@rfid_bp.route('/validate', methods=['POST'])
@token_required
@staff_required
def validate(current_user):
    data = request.get_json(silent=True) or {}
    rfid_uid = data.get('rfidUID')
    if not rfid_uid:
        return jsonify({'error': 'RFID UID is required.'}), 400

    owner = User.query.filter_by(rfid_uid=rfid_uid).first()
    return jsonify({
        'is_assigned': owner is not None,
        'assigned_to': {'id': owner.id, 'username': owner.username, 'email': owner.email} if owner else None,
    })
