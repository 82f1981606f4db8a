import threading
import pytest
from washgate import db
from washgate.models import Booking, Machine, User, WashSession
from washgate.models.status import AccountStatus, BookingStatus, MachineStatus, NotificationType, SessionStatus
from washgate.services.access_gate import AccessGate
from washgate.utils.locks import machine_locks

from helpers import at, notifications_for


def test_unknown_credential(machines):
    result = AccessGate.scan('NOPE', 'W1', now=at('10:00'))
    assert result.action == 'DENY'
    assert result.reason_code == 'UNKNOWN_CREDENTIAL'
    assert result.http_status == 403


def test_inactive_account(machines, user_factory):
    user_factory('pending', rfid_uid='RFID-PENDING', status=AccountStatus.PENDING.value)
    result = AccessGate.scan('RFID-PENDING', 'W1', now=at('10:00'))
    assert result.reason_code == 'INACTIVE_ACCOUNT'


def test_unknown_machine(resident, machines):
    result = AccessGate.scan('RFID-ASHA', 'W9', now=at('10:00'))
    assert result.reason_code == 'UNKNOWN_MACHINE'
    assert result.http_status == 404


def test_missing_fields(app):
    result = AccessGate.scan('', 'W1')
    assert result.reason_code == 'BAD_REQUEST'
    assert result.http_status == 400


def test_master_credential_bypasses_bookings(machines):
    result = AccessGate.scan('MASTER-0000', 'W1', now=at('03:00'))
    assert result.action == 'MASTER_ACCESS'
    assert result.duration_minutes == 60
    assert WashSession.query.count() == 0


def test_machine_out_of_service(resident, machines, book):
    book(resident, 'W1', '10:00')
    machines[0].status = MachineStatus.REPAIR.value
    db.session.commit()
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:02'))
    assert result.reason_code == 'MACHINE_UNAVAILABLE'


def test_no_booking(resident, machines):
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:00'))
    assert result.reason_code == 'NO_BOOKING'


def test_scan_within_grace_starts_session(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:08'))

    assert result.action == 'POWER_ON'
    assert result.duration_minutes == 22
    assert result.booking_id == booking.id

    wash_session = db.session.get(WashSession, result.session_id)
    assert wash_session.status == SessionStatus.RUNNING.value
    assert wash_session.scheduled_end_at == at('10:30')

    booking = db.session.get(Booking, booking.id)
    assert booking.status == BookingStatus.ACTIVE.value
    assert booking.rfid_scanned_at == at('10:08')
    assert booking.session_id == wash_session.id

    machine = Machine.query.filter_by(code='W1').first()
    assert machine.status == MachineStatus.IN_USE.value
    assert machine.current_session_id == wash_session.id
    assert machine.current_booking_id == booking.id

    assert db.session.get(User, resident.id).total_sessions == 1
    assert len(notifications_for(resident.id, NotificationType.SESSION_STARTED)) == 1


def test_early_arrival_within_grace(resident, book):
    book(resident, 'W1', '10:00', 30)
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('09:50'))
    assert result.action == 'POWER_ON'
    assert result.duration_minutes == 40


def test_too_early_or_too_late(resident, book):
    book(resident, 'W1', '10:00', 30)
    assert AccessGate.scan('RFID-ASHA', 'W1', now=at('09:49')).reason_code == 'NO_BOOKING'
    assert AccessGate.scan('RFID-ASHA', 'W1', now=at('10:31')).reason_code == 'NO_BOOKING'


def test_earliest_booking_wins(resident, book):
    first = book(resident, 'W1', '10:00', 10)
    book(resident, 'W1', '10:20', 10)
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:05'))
    assert result.booking_id == first.id


def test_second_scan_ends_session(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    started = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:08'))

    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:20'))
    assert result.action == 'POWER_OFF'
    assert result.duration_minutes == 12
    assert result.session_id == started.session_id

    wash_session = db.session.get(WashSession, started.session_id)
    assert wash_session.status == SessionStatus.COMPLETED.value
    assert wash_session.terminated_by == 'user'
    assert db.session.get(Booking, booking.id).status == BookingStatus.COMPLETED.value

    machine = Machine.query.filter_by(code='W1').first()
    assert machine.status == MachineStatus.AVAILABLE.value
    assert machine.current_session_id is None
    assert machine.current_booking_id is None
    assert machine.total_usage_count == 1
    assert machine.total_usage_minutes == 12


def test_other_user_cannot_take_busy_machine(resident, other_resident, book):
    book(resident, 'W1', '10:00', 30)
    AccessGate.scan('RFID-ASHA', 'W1', now=at('10:01'))
    result = AccessGate.scan('RFID-BEN', 'W1', now=at('10:05'))
    assert result.reason_code == 'MACHINE_IN_USE'
    assert Machine.query.filter_by(code='W1').first().status == MachineStatus.IN_USE.value


def test_internal_error_fails_closed(resident, book, monkeypatch):
    book(resident, 'W1', '10:00', 30)

    def broken(*args, **kwargs):
        raise RuntimeError('database went away')

    monkeypatch.setattr(AccessGate, 'find_usable_booking', staticmethod(broken))
    result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:01'))
    assert result.action == 'DENY'
    assert result.reason_code == 'INTERNAL_ERROR'
    assert WashSession.query.count() == 0


def test_busy_machine_lock_denies(resident, machines, book):
    book(resident, 'W1', '10:00', 30)
    machine_id = machines[0].id
    held = threading.Event()
    release = threading.Event()

    def hold_lock():
        with machine_locks.hold(machine_id):
            held.set()
            release.wait(5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    try:
        assert held.wait(5)
        result = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:01'))
    finally:
        release.set()
        holder.join()

    assert result.reason_code == 'GATE_BUSY'
    assert WashSession.query.count() == 0


def test_scan_payload_shape(resident, book):
    book(resident, 'W1', '10:00', 30)
    payload = AccessGate.scan('RFID-ASHA', 'W1', now=at('10:00')).to_dict()
    assert payload['action'] == 'POWER_ON'
    assert payload['durationMinutes'] == 30
    assert 'reasonCode' not in payload
