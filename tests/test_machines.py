import pytest
from washgate import db
from washgate.models import Booking, Machine, WashSession
from washgate.models.status import BookingStatus, MachineStatus, NotificationType, SessionStatus
from washgate.services.machine_service import MachineService
from washgate.services.session_service import SessionService
from washgate.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

from helpers import at, notifications_for


def test_create_machine(warden, resident, app):
    machine = MachineService.create_machine(warden, 'W3', 'Washer 3', 'Block B', relay_pin=19)
    assert machine.status == MachineStatus.AVAILABLE.value
    assert machine.relay_pin == 19

    with pytest.raises(ConflictError):
        MachineService.create_machine(warden, 'W3', 'Again', 'Block B')
    with pytest.raises(PermissionDeniedError):
        MachineService.create_machine(resident, 'W4', 'Washer 4', 'Block B')
    with pytest.raises(ValidationError):
        MachineService.create_machine(warden, '', 'Washer 5', 'Block B')


def test_update_machine(warden, machines):
    machine = MachineService.update_machine('W1', warden, name='Front Washer', location=None)
    assert machine.name == 'Front Washer'
    assert machine.location == 'Block A'


def test_maintenance_cancels_bookings_and_interrupts_session(resident, other_resident, warden, book):
    current = book(resident, 'W1', '10:00', 30)
    upcoming = book(other_resident, 'W1', '11:00', 30)
    elsewhere = book(other_resident, 'W2', '12:00', 30)
    wash_session = SessionService.start_session(current.id, now=at('10:00'))

    machine = MachineService.update_status('W1', 'maintenance', warden, note='Drum bearing', now=at('10:15'))

    assert machine.status == MachineStatus.MAINTENANCE.value
    assert machine.current_session_id is None
    assert machine.current_booking_id is None
    assert machine.maintenance_note == 'Drum bearing'
    assert machine.last_maintenance_at == at('10:15')

    wash_session = db.session.get(WashSession, wash_session.id)
    assert wash_session.status == SessionStatus.INTERRUPTED.value
    assert wash_session.terminated_by == 'staff'
    assert db.session.get(Booking, current.id).status == BookingStatus.INTERRUPTED.value

    upcoming = db.session.get(Booking, upcoming.id)
    assert upcoming.status == BookingStatus.CANCELLED.value
    assert upcoming.cancel_reason == 'Machine set to maintenance by warden'
    assert db.session.get(Booking, elsewhere.id).status == BookingStatus.CONFIRMED.value

    assert len(notifications_for(resident.id, NotificationType.MAINTENANCE_ALERT)) == 1
    assert len(notifications_for(other_resident.id, NotificationType.MAINTENANCE_ALERT)) == 1


def test_back_in_service(warden, machines):
    MachineService.update_status('W1', 'repair', warden, note='Pump', now=at('10:00'))
    machine = MachineService.update_status('W1', 'available', warden, now=at('11:00'))
    assert machine.status == MachineStatus.AVAILABLE.value
    assert machine.maintenance_note is None


def test_status_validation(warden, resident, machines):
    with pytest.raises(ValidationError):
        MachineService.update_status('W1', 'in-use', warden)
    with pytest.raises(ValidationError):
        MachineService.update_status('W1', 'broken', warden)
    with pytest.raises(PermissionDeniedError):
        MachineService.update_status('W1', 'maintenance', resident)
    with pytest.raises(NotFoundError):
        MachineService.update_status('W9', 'maintenance', warden)


def test_in_use_machine_cannot_be_marked_available_or_deleted(resident, warden, book):
    booking = book(resident, 'W1', '10:00', 30)
    SessionService.start_session(booking.id, now=at('10:00'))
    with pytest.raises(ConflictError):
        MachineService.update_status('W1', 'available', warden)
    with pytest.raises(ConflictError):
        MachineService.delete_machine('W1', warden)


def test_delete_machine(warden, machines):
    MachineService.delete_machine('W2', warden)
    assert Machine.query.filter_by(code='W2').first() is None


def test_heartbeat(machines):
    machine = MachineService.record_heartbeat('W1', now=at('10:00'))
    assert machine.is_online
    assert machine.last_heartbeat == at('10:00')
    with pytest.raises(NotFoundError):
        MachineService.record_heartbeat('W9')


def test_list_machines(warden, machines):
    MachineService.update_status('W2', 'disabled', warden, now=at('10:00'))
    assert [m.code for m in MachineService.list_machines()] == ['W1', 'W2']
    assert [m.code for m in MachineService.list_machines(status='available')] == ['W1']


def test_emergency_shutdown_and_reset(resident, other_resident, warden, book):
    current = book(resident, 'W1', '10:00', 30)
    upcoming = book(other_resident, 'W2', '11:00', 30)
    wash_session = SessionService.start_session(current.id, now=at('10:00'))

    summary = MachineService.emergency_shutdown(warden, now=at('10:15'))
    assert summary == {'machines_disabled': 2, 'sessions_stopped': 1, 'bookings_cancelled': 1}

    wash_session = db.session.get(WashSession, wash_session.id)
    assert wash_session.status == SessionStatus.TERMINATED.value
    assert db.session.get(Booking, current.id).status == BookingStatus.INTERRUPTED.value
    upcoming = db.session.get(Booking, upcoming.id)
    assert upcoming.status == BookingStatus.CANCELLED.value
    assert upcoming.cancel_reason == 'Emergency shutdown'

    for machine in Machine.query.all():
        assert machine.status == MachineStatus.DISABLED.value
        assert machine.current_session_id is None
        assert machine.current_booking_id is None
    assert len(notifications_for(other_resident.id, NotificationType.EMERGENCY)) == 1

    assert MachineService.emergency_reset(warden) == 2
    assert {m.status for m in Machine.query.all()} == {MachineStatus.AVAILABLE.value}


def test_emergency_reset_leaves_other_outages_alone(warden, resident, machines):
    MachineService.update_status('W1', 'repair', warden, note='Pump', now=at('10:00'))
    MachineService.update_status('W2', 'disabled', warden, now=at('10:00'))
    assert MachineService.emergency_reset(warden) == 1
    assert MachineService.get_machine('W1').status == MachineStatus.REPAIR.value
    assert MachineService.get_machine('W2').status == MachineStatus.AVAILABLE.value

    with pytest.raises(PermissionDeniedError):
        MachineService.emergency_shutdown(resident)


def test_emergency_routes_are_admin_only(client, warden, user_factory, machines, auth_header):
    admin = user_factory('root', role='admin')
    assert client.post('/api/admin/emergency/shutdown', headers=auth_header(warden)).status_code == 403

    response = client.post('/api/admin/emergency/shutdown', headers=auth_header(admin))
    assert response.status_code == 200
    assert response.get_json()['machines_disabled'] == 2

    response = client.post('/api/admin/emergency/reset', headers=auth_header(admin))
    assert response.get_json()['machines_reset'] == 2
