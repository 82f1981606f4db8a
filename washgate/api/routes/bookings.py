from flask import Blueprint, request, jsonify, current_app
from washgate.services.booking_service import BookingService
from washgate.utils.decorators import token_required, staff_required
from datetime import datetime, date

bookings_bp = Blueprint('bookings', __name__)


@bookings_bp.route('/', methods=['POST'])
@token_required
def create_booking(current_user):
    data = request.get_json(silent=True) or {}
    try:
        start = datetime.fromisoformat(data['start_time'])
        machine_code = data['machine_code']
    except (KeyError, TypeError, ValueError):
        return jsonify({'error': 'machine_code and an ISO start_time are required'}), 400

    booking = BookingService.create_booking(
        user=current_user,
        machine_code=machine_code,
        start_time=start,
        duration_minutes=data.get('duration_minutes'),
    )
    return jsonify(booking.to_dict()), 201


@bookings_bp.route('/my_bookings', methods=['GET'])
@token_required
def get_my_bookings(current_user):
    bookings = BookingService.get_user_bookings(current_user.id, status=request.args.get('status'))
    return jsonify([b.to_dict() for b in bookings])


@bookings_bp.route('/all', methods=['GET'])
@token_required
@staff_required
def get_all_bookings(current_user):
    day = request.args.get('date')
    try:
        day = date.fromisoformat(day) if day else None
    except ValueError:
        return jsonify({'error': 'date must be YYYY-MM-DD'}), 400
    bookings = BookingService.get_all_bookings(
        status=request.args.get('status'),
        machine_code=request.args.get('machine_code'),
        day=day,
    )
    return jsonify([b.to_dict() for b in bookings])


@bookings_bp.route('/<int:booking_id>', methods=['GET'])
@token_required
def get_booking(current_user, booking_id):
    booking = BookingService.get_booking(booking_id, actor=current_user)
    return jsonify(booking.to_dict())


@bookings_bp.route('/<int:booking_id>/cancel', methods=['PUT'])
@token_required
def cancel_booking(current_user, booking_id):
    data = request.get_json(silent=True) or {}
    booking = BookingService.cancel_booking(booking_id, current_user, reason=data.get('reason'))
    return jsonify({'message': 'Booking cancelled', 'booking': booking.to_dict()}), 200


@bookings_bp.route('/slots/<machine_code>/<day>', methods=['GET'])
@token_required
def get_slots(current_user, machine_code, day):
    try:
        day = date.fromisoformat(day)
    except ValueError:
        return jsonify({'error': 'date must be YYYY-MM-DD'}), 400
    return jsonify(BookingService.get_machine_schedule(machine_code, day))


@bookings_bp.route('/next_slot/<machine_code>', methods=['GET'])
@token_required
def get_next_slot(current_user, machine_code):
    duration = request.args.get('duration', default=current_app.config['MIN_BOOKING_MINUTES'], type=int)
    BookingService.validate_duration(duration)
    machine = BookingService.get_machine_by_code(machine_code)
    start, end = BookingService.next_free_slot(machine.id, duration)
    return jsonify({
        'machine_code': machine.code,
        'start_time': start.isoformat(),
        'end_time': end.isoformat(),
        'duration_minutes': duration,
    })
