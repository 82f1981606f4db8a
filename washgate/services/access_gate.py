"""Badge-scan decisions for the machine readers.

The reader bridge sends a credential and a machine code; the gate answers with
what the relay should do. Anything unexpected answers DENY, so power stays off.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from washgate.extensions import db
from washgate.models import Booking, Machine, User, WashSession
from washgate.models.status import BookingStatus, MachineStatus, OUT_OF_SERVICE
from washgate.errors import ServiceError
from washgate.services.session_service import SessionService
from washgate.utils.locks import LockTimeout, machine_locks

POWER_ON = 'POWER_ON'
POWER_OFF = 'POWER_OFF'
MASTER_ACCESS = 'MASTER_ACCESS'
DENY = 'DENY'


@dataclass
class ScanResult:
    action: str
    message: str
    reason_code: Optional[str] = None
    duration_minutes: Optional[int] = None
    session_id: Optional[int] = None
    booking_id: Optional[int] = None
    http_status: int = 200

    @property
    def granted(self):
        return self.action != DENY

    def to_dict(self):
        payload = {
            'action': self.action,
            'reasonCode': self.reason_code,
            'message': self.message,
            'durationMinutes': self.duration_minutes,
            'sessionId': self.session_id,
            'bookingId': self.booking_id,
        }
        return {key: value for key, value in payload.items() if value is not None}


def deny(reason_code, message, http_status=403):
    return ScanResult(DENY, message, reason_code=reason_code, http_status=http_status)


class AccessGate:

    @staticmethod
    def find_usable_booking(user_id, machine_id, now):
        """Earliest confirmed booking the user may start now, early arrivals included."""
        grace = timedelta(minutes=current_app.config['GRACE_PERIOD_MINUTES'])
        return Booking.query.filter(
            Booking.user_id == user_id,
            Booking.machine_id == machine_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_time <= now + grace,
            Booking.end_time >= now,
        ).order_by(Booking.start_time).first()

    @staticmethod
    def scan(credential_id, machine_code, now=None):
        if not credential_id or not machine_code:
            return deny('BAD_REQUEST', 'RFID UID and Machine ID are required.', http_status=400)

        try:
            result = AccessGate._decide(credential_id, machine_code, now or datetime.now())
        except LockTimeout:
            db.session.rollback()
            result = deny('GATE_BUSY', 'Machine is busy, scan again.', http_status=503)
        except ServiceError as e:
            # a lost race with another writer on this machine
            db.session.rollback()
            result = deny(e.code, e.message, http_status=e.status_code)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Scan of %s on %s failed", credential_id, machine_code)
            result = deny('INTERNAL_ERROR', 'Access could not be verified.', http_status=503)

        if result.granted:
            current_app.logger.info(
                "Scan on %s: %s (session %s)", machine_code, result.action, result.session_id
            )
        else:
            current_app.logger.warning("Scan on %s denied: %s", machine_code, result.reason_code)
        return result

    @staticmethod
    def _decide(credential_id, machine_code, now):
        cfg = current_app.config

        master = cfg.get('MASTER_RFID_UID')
        if master and credential_id == master:
            return ScanResult(
                MASTER_ACCESS, 'Master RFID access granted.',
                duration_minutes=cfg['MASTER_ACCESS_MINUTES'],
            )

        user = User.query.filter_by(rfid_uid=credential_id).first()
        if not user:
            return deny('UNKNOWN_CREDENTIAL', 'RFID not recognized.')
        if not user.is_active_account:
            return deny('INACTIVE_ACCOUNT', 'Account not active.')

        machine = Machine.query.filter_by(code=machine_code).first()
        if not machine:
            return deny('UNKNOWN_MACHINE', 'Machine not found.', http_status=404)

        with machine_locks.hold(machine.id, timeout=cfg['GATE_TIMEOUT_SECONDS']):
            db.session.refresh(machine)

            if machine.status in OUT_OF_SERVICE:
                return deny('MACHINE_UNAVAILABLE', f"Machine is {machine.status}.")

            if machine.status == MachineStatus.IN_USE.value:
                return AccessGate._power_off(user, machine, now)

            booking = AccessGate.find_usable_booking(user.id, machine.id, now)
            if not booking:
                return deny('NO_BOOKING', 'No valid booking found for this machine.')

            wash_session = SessionService.start_session(booking.id, now=now, via_rfid=True)
            return ScanResult(
                POWER_ON, 'Access granted. Session started.',
                duration_minutes=wash_session.remaining_minutes(now),
                session_id=wash_session.id,
                booking_id=booking.id,
            )

    @staticmethod
    def _power_off(user, machine, now):
        """A second scan by the session owner ends the session."""
        wash_session = None
        if machine.current_session_id:
            wash_session = db.session.get(WashSession, machine.current_session_id, populate_existing=True)

        if not wash_session or wash_session.user_id != user.id or not wash_session.is_live:
            return deny('MACHINE_IN_USE', 'Machine is currently in use by another user.')

        wash_session = SessionService.end_session(
            wash_session.id, actor=user, now=now, terminated_by='user'
        )
        return ScanResult(
            POWER_OFF, 'Session ended.',
            duration_minutes=wash_session.duration_minutes,
            session_id=wash_session.id,
            booking_id=wash_session.booking_id,
        )
