from contextlib import contextmanager
from datetime import datetime, timedelta
from flask import current_app
from washgate.models import Booking, Machine, User, WashSession
from washgate.models.status import (
    BookingStatus, MachineStatus, NotificationType, SessionStatus, LIVE_SESSION_STATUSES,
)
from washgate.extensions import db
from washgate.errors import ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError
from washgate.services.booking_service import BookingService
from washgate.services.notification_service import NotificationService
from washgate.utils.locks import machine_locks, session_locks
from washgate.utils.transactions import commit, load_for_update


def _minutes_between(start, end):
    return (end - start).total_seconds() / 60


def _terminated_by(actor):
    if actor is None:
        return 'auto'
    return 'staff' if actor.is_staff else 'user'


def _require_staff(actor, action):
    # actor None is the system itself (issue reports, sweeps)
    if actor is not None and not actor.is_staff:
        raise PermissionDeniedError(f"Only wardens or admins can {action} a session.")


class SessionService:

    @staticmethod
    def get_session(session_id):
        wash_session = db.session.get(WashSession, session_id)
        if not wash_session:
            raise NotFoundError('Session', session_id)
        return wash_session

    @staticmethod
    @contextmanager
    def locked(session_id):
        """Serialize on the session's machine, then the session; yield fresh rows."""
        wash_session = SessionService.get_session(session_id)
        with machine_locks.hold(wash_session.machine_id), session_locks.hold(wash_session.id):
            wash_session = load_for_update(WashSession, wash_session.id)
            booking = load_for_update(Booking, wash_session.booking_id)
            machine = load_for_update(Machine, wash_session.machine_id)
            yield wash_session, booking, machine

    @staticmethod
    def start_session(booking_id, now=None, via_rfid=False):
        """Turn a confirmed booking into a running session and occupy its machine."""
        now = now or datetime.now()
        booking = BookingService.get_booking(booking_id)

        with machine_locks.hold(booking.machine_id):
            booking = load_for_update(Booking, booking.id)
            machine = load_for_update(Machine, booking.machine_id)
            if machine.status != MachineStatus.AVAILABLE.value:
                raise ConflictError(f"Machine is {machine.status}.", code='MACHINE_BUSY')

            booking.transition(BookingStatus.ACTIVE)
            wash_session = WashSession(
                booking_id=booking.id,
                user_id=booking.user_id,
                machine_id=machine.id,
                status=SessionStatus.RUNNING.value,
                started_at=now,
                scheduled_end_at=booking.end_time,
            )
            db.session.add(wash_session)
            db.session.flush()

            booking.session_id = wash_session.id
            booking.arrived_at = now
            if via_rfid:
                booking.rfid_scanned_at = now

            machine.status = MachineStatus.IN_USE.value
            machine.current_booking_id = booking.id
            machine.current_session_id = wash_session.id

            User.increment(booking.user_id, 'total_sessions')
            commit()

        current_app.logger.info(
            "Session %s started on %s for booking %s", wash_session.id, machine.code, booking.id
        )
        NotificationService.notify(
            wash_session.user_id,
            NotificationType.SESSION_STARTED,
            'Session Started',
            f"Machine {machine.name} is now ON. Your session ends at {wash_session.effective_end:%H:%M}.",
            {'session_id': wash_session.id, 'booking_id': booking.id},
        )
        return wash_session

    @staticmethod
    def extend_session(session_id, user, now=None):
        """Grant the single extension, unless it would eat into the next booking's buffer."""
        extension = current_app.config['EXTENSION_MINUTES']
        wash_session = SessionService.get_session(session_id)
        if wash_session.user_id != user.id:
            raise PermissionDeniedError("Not authorized.")

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            if wash_session.status != SessionStatus.RUNNING.value:
                raise InvalidTransitionError(
                    'session', wash_session.status, 'extend',
                    message=f"Can only extend a running session (session is {wash_session.status}).",
                )
            if wash_session.extension_granted:
                raise ConflictError(
                    "Extension already used for this session. Only one extension allowed.",
                    code='EXTENSION_USED',
                )

            current_end = wash_session.effective_end
            new_end = current_end + timedelta(minutes=extension)
            if not BookingService.is_available(machine.id, current_end, new_end, exclude_booking_id=booking.id):
                raise ConflictError(
                    "Cannot extend, the next slot is already booked.",
                    code='EXTENSION_BLOCKED',
                )

            wash_session.extension_granted = True
            wash_session.extension_minutes = extension
            wash_session.extended_end_at = new_end
            booking.end_time = new_end
            commit()

        current_app.logger.info("Session %s extended to %s", wash_session.id, new_end)
        NotificationService.notify(
            wash_session.user_id,
            NotificationType.EXTENSION_GRANTED,
            'Extension Granted',
            f"Your session has been extended by {extension} minutes. New end time: {new_end:%H:%M}.",
            {'session_id': wash_session.id, 'new_end_time': new_end.isoformat()},
        )
        return wash_session

    @staticmethod
    def pause_session(session_id, actor=None, now=None, issue_id=None):
        now = now or datetime.now()
        _require_staff(actor, 'pause')

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            wash_session.transition(SessionStatus.PAUSED)
            wash_session.paused_at = now
            if issue_id is not None:
                wash_session.interrupted_by_issue_id = issue_id
            commit()

        current_app.logger.info("Session %s paused", wash_session.id)
        return wash_session

    @staticmethod
    def resume_session(session_id, actor=None, now=None):
        """Resume a paused session; the paused time is added back onto its end."""
        now = now or datetime.now()
        _require_staff(actor, 'resume')

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            wash_session.transition(SessionStatus.RUNNING)
            paused_for = max(now - wash_session.paused_at, timedelta(0))

            wash_session.resumed_at = now
            wash_session.interrupted_by_issue_id = None
            wash_session.total_paused_minutes += round(paused_for.total_seconds() / 60)
            wash_session.extended_end_at = wash_session.effective_end + paused_for
            booking.end_time = wash_session.extended_end_at
            commit()

        current_app.logger.info(
            "Session %s resumed after %s, now ends at %s", wash_session.id, paused_for, wash_session.effective_end
        )
        return wash_session

    @staticmethod
    def end_session(session_id, actor=None, now=None, terminated_by=None):
        """
        Complete a running or paused session and free its machine.
        `actor` None means the clock ended it.
        """
        now = now or datetime.now()
        wash_session = SessionService.get_session(session_id)
        if actor is not None and not actor.is_staff and wash_session.user_id != actor.id:
            raise PermissionDeniedError("Not authorized.")

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            wash_session.transition(SessionStatus.COMPLETED)
            wash_session.actual_end_at = now
            wash_session.terminated_by = terminated_by or _terminated_by(actor)
            wash_session.duration_minutes = max(0, round(_minutes_between(wash_session.started_at, now)))

            booking.transition(BookingStatus.COMPLETED)

            if machine.current_session_id == wash_session.id:
                machine.release()
            machine.total_usage_count += 1
            machine.total_usage_minutes += wash_session.duration_minutes
            commit()

        current_app.logger.info(
            "Session %s completed by %s after %s minutes",
            wash_session.id, wash_session.terminated_by, wash_session.duration_minutes,
        )
        NotificationService.notify(
            wash_session.user_id,
            NotificationType.SESSION_COMPLETED,
            'Session Completed',
            f"Your washing session is complete. Duration: {wash_session.duration_minutes} minutes.",
            {'session_id': wash_session.id},
        )
        return wash_session

    @staticmethod
    def force_stop_session(session_id, actor, now=None):
        now = now or datetime.now()
        if actor is None or not actor.is_staff:
            raise PermissionDeniedError("Only wardens or admins can force stop a session.")

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            wash_session.transition(SessionStatus.TERMINATED)
            wash_session.actual_end_at = now
            wash_session.terminated_by = 'staff'
            wash_session.duration_minutes = max(0, round(_minutes_between(wash_session.started_at, now)))

            booking.transition(BookingStatus.INTERRUPTED)
            if machine.current_session_id == wash_session.id:
                machine.release()
            commit()

        current_app.logger.warning("Session %s force stopped by user %s", wash_session.id, actor.id)
        NotificationService.notify(
            wash_session.user_id,
            NotificationType.MAINTENANCE_ALERT,
            'Session Force Stopped',
            "Your session was stopped by the warden. Please contact the warden for assistance.",
            {'session_id': wash_session.id},
        )
        return wash_session

    @staticmethod
    def interrupt_session(session_id, actor=None, reason='maintenance', now=None):
        """Cut a live session short because its machine was taken out of service."""
        now = now or datetime.now()

        with SessionService.locked(session_id) as (wash_session, booking, machine):
            wash_session.transition(SessionStatus.INTERRUPTED)
            wash_session.actual_end_at = now
            wash_session.terminated_by = _terminated_by(actor)
            wash_session.duration_minutes = max(0, round(_minutes_between(wash_session.started_at, now)))
            booking.transition(BookingStatus.INTERRUPTED)
            commit()

        NotificationService.notify(
            wash_session.user_id,
            NotificationType.MAINTENANCE_ALERT,
            'Session Interrupted',
            f"Your session on {machine.name} was interrupted due to {reason}.",
            {'session_id': wash_session.id, 'machine_code': machine.code},
        )
        return wash_session

    @staticmethod
    def get_active_session(user_id, now=None):
        now = now or datetime.now()
        wash_session = WashSession.query.filter(
            WashSession.user_id == user_id,
            WashSession.status.in_(LIVE_SESSION_STATUSES),
        ).first()
        if not wash_session:
            return None
        return {
            'session': wash_session.to_dict(),
            'remaining_minutes': wash_session.remaining_minutes(now),
            'effective_end': wash_session.effective_end.isoformat(),
        }

    @staticmethod
    def get_session_history(user_id):
        return WashSession.query.filter(WashSession.user_id == user_id).order_by(
            WashSession.started_at.desc()
        ).all()

    @staticmethod
    def get_all_sessions(status=None, machine_code=None):
        query = WashSession.query
        if status:
            query = query.filter(WashSession.status == status)
        if machine_code:
            machine = BookingService.get_machine_by_code(machine_code)
            query = query.filter(WashSession.machine_id == machine.id)
        return query.order_by(WashSession.started_at.desc()).all()
