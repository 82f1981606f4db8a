from flask import Blueprint, request, jsonify
from washgate.services.machine_service import MachineService
from washgate.utils.decorators import token_required

machines_bp = Blueprint('machines', __name__)


@machines_bp.route('/', methods=['GET'])
@token_required
def list_machines(current_user):
    machines = MachineService.list_machines(status=request.args.get('status'))
    return jsonify([m.to_dict() for m in machines])


@machines_bp.route('/<machine_code>', methods=['GET'])
@token_required
def get_machine(current_user, machine_code):
    return jsonify(MachineService.get_machine(machine_code).to_dict())


@machines_bp.route('/<machine_code>/heartbeat', methods=['POST'])
def heartbeat(machine_code):
    """Reader bridge check-in."""
    machine = MachineService.record_heartbeat(machine_code)
    return jsonify({
        'machine_status': machine.status,
        'current_session_id': machine.current_session_id,
    })
