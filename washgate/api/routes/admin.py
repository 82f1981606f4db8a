from flask import Blueprint, request, jsonify, current_app
from washgate.utils.decorators import token_required, staff_required, admin_required
from washgate.models import User
from washgate.models.status import AccountStatus, Role
from washgate.extensions import db
from washgate.services.machine_service import MachineService, EDITABLE_FIELDS
from werkzeug.security import generate_password_hash

admin_bp = Blueprint('admin', __name__)

# --- USERS MANAGEMENT ---

@admin_bp.route('/users', methods=['GET'])
@token_required
@staff_required
def get_users(current_user):
    query = User.query
    if request.args.get('account_status'):
        query = query.filter(User.account_status == request.args['account_status'])
    return jsonify([u.to_dict() for u in query.order_by(User.id).all()]), 200


@admin_bp.route('/users', methods=['POST'])
@token_required
@admin_required
def create_user(current_user):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'No input data provided'}), 400

    if User.query.filter_by(username=data.get('username')).first():
        return jsonify({'message': 'Username already exists'}), 400
    if User.query.filter_by(email=data.get('email')).first():
        return jsonify({'message': 'Email already exists'}), 400
    if not data.get('password'):
        return jsonify({'message': 'Password is required'}), 400
    if data.get('role', Role.USER.value) not in [r.value for r in Role]:
        return jsonify({'message': 'Unknown role'}), 400

    new_user = User(
        username=data.get('username'),
        email=data.get('email'),
        password_hash=generate_password_hash(data.get('password')),
        role=data.get('role', Role.USER.value),
        room_number=data.get('room_number'),
        account_status=AccountStatus.ACTIVE.value,
    )
    db.session.add(new_user)
    db.session.commit()
    current_app.logger.info("User %s created by admin %s", new_user.username, current_user.id)
    return jsonify({'message': 'User created successfully', 'user': new_user.to_dict()}), 201


def _set_account_status(user_id, status):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404
    user.account_status = status
    db.session.commit()
    return jsonify({'message': f'User {status}', 'user': user.to_dict()}), 200


@admin_bp.route('/users/<int:user_id>/approve', methods=['PUT'])
@token_required
@staff_required
def approve_user(current_user, user_id):
    return _set_account_status(user_id, AccountStatus.ACTIVE.value)


@admin_bp.route('/users/<int:user_id>/block', methods=['PUT'])
@token_required
@staff_required
def block_user(current_user, user_id):
    if user_id == current_user.id:
        return jsonify({'message': 'Cannot block yourself'}), 400
    return _set_account_status(user_id, AccountStatus.BLOCKED.value)


@admin_bp.route('/users/<int:user_id>/rfid', methods=['PUT'])
@token_required
@staff_required
def assign_rfid(current_user, user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404

    rfid_uid = (request.get_json(silent=True) or {}).get('rfid_uid')
    if not rfid_uid:
        return jsonify({'message': 'rfid_uid is required'}), 400
    owner = User.query.filter_by(rfid_uid=rfid_uid).first()
    if owner and owner.id != user.id:
        return jsonify({'message': f'RFID already assigned to {owner.username}'}), 409

    user.rfid_uid = rfid_uid
    db.session.commit()
    current_app.logger.info("RFID assigned to user %s", user.id)
    return jsonify({'message': 'RFID assigned', 'user': user.to_dict()}), 200


# --- MACHINES MANAGEMENT ---

@admin_bp.route('/machines', methods=['POST'])
@token_required
@staff_required
def create_machine(current_user):
    data = request.get_json(silent=True) or {}
    machine = MachineService.create_machine(
        current_user,
        code=data.get('code'),
        name=data.get('name'),
        location=data.get('location'),
        relay_address=data.get('relay_address'),
        relay_pin=data.get('relay_pin'),
    )
    return jsonify({'message': 'Machine created', 'machine': machine.to_dict()}), 201


@admin_bp.route('/machines/<machine_code>', methods=['PUT'])
@token_required
@staff_required
def update_machine(current_user, machine_code):
    data = request.get_json(silent=True) or {}
    changes = {field: data.get(field) for field in EDITABLE_FIELDS}
    machine = MachineService.update_machine(machine_code, current_user, **changes)
    return jsonify({'message': 'Machine updated', 'machine': machine.to_dict()}), 200


@admin_bp.route('/machines/<machine_code>/status', methods=['PUT'])
@token_required
@staff_required
def update_machine_status(current_user, machine_code):
    data = request.get_json(silent=True) or {}
    machine = MachineService.update_status(
        machine_code, data.get('status'), current_user, note=data.get('maintenance_note')
    )
    return jsonify({'message': f"Machine status updated to '{machine.status}'", 'machine': machine.to_dict()}), 200


@admin_bp.route('/machines/<machine_code>', methods=['DELETE'])
@token_required
@admin_required
def delete_machine(current_user, machine_code):
    MachineService.delete_machine(machine_code, current_user)
    return jsonify({'message': 'Machine deleted'}), 200


# --- EMERGENCY CONTROLS ---

@admin_bp.route('/emergency/shutdown', methods=['POST'])
@token_required
@admin_required
def emergency_shutdown(current_user):
    summary = MachineService.emergency_shutdown(current_user)
    return jsonify({'message': 'Emergency shutdown executed', **summary}), 200


@admin_bp.route('/emergency/reset', methods=['POST'])
@token_required
@admin_required
def emergency_reset(current_user):
    reset = MachineService.emergency_reset(current_user)
    return jsonify({'message': 'Emergency reset complete', 'machines_reset': reset}), 200
