from datetime import datetime
from flask import current_app
from washgate.models import Booking, Machine, WashSession
from washgate.models.status import (
    BookingStatus, MachineStatus, NotificationType, OUT_OF_SERVICE, LIVE_SESSION_STATUSES,
)
from washgate.extensions import db
from washgate.errors import ConflictError, PermissionDeniedError, ValidationError
from washgate.services.booking_service import BookingService
from washgate.services.notification_service import NotificationService
from washgate.services.session_service import SessionService
from washgate.utils.locks import machine_locks
from washgate.utils.transactions import commit, load_for_update

EDITABLE_FIELDS = ('name', 'location', 'relay_address', 'relay_pin')


def _require_staff(actor):
    if actor is None or not actor.is_staff:
        raise PermissionDeniedError("Only wardens or admins can manage machines.")


class MachineService:

    @staticmethod
    def get_machine(machine_code):
        return BookingService.get_machine_by_code(machine_code)

    @staticmethod
    def list_machines(status=None):
        query = Machine.query
        if status:
            query = query.filter(Machine.status == status)
        return query.order_by(Machine.code).all()

    @staticmethod
    def create_machine(actor, code, name, location, relay_address=None, relay_pin=0):
        _require_staff(actor)
        if not code or not name or not location:
            raise ValidationError("Code, name and location are required.")
        if Machine.query.filter_by(code=code).first():
            raise ConflictError("Machine with this code already exists.", code='DUPLICATE_MACHINE')

        machine = Machine(
            code=code,
            name=name,
            location=location,
            relay_address=relay_address,
            relay_pin=relay_pin or 0,
        )
        db.session.add(machine)
        db.session.commit()
        current_app.logger.info("Machine %s created by user %s", code, actor.id)
        return machine

    @staticmethod
    def update_machine(machine_code, actor, **changes):
        _require_staff(actor)
        machine = MachineService.get_machine(machine_code)
        with machine_locks.hold(machine.id):
            machine = load_for_update(Machine, machine.id)
            for field in EDITABLE_FIELDS:
                if changes.get(field) is not None:
                    setattr(machine, field, changes[field])
            commit()
        return machine

    @staticmethod
    def update_status(machine_code, status, actor, note=None, now=None):
        """
        Set a machine's service status.

        Taking it out of service cancels its upcoming bookings and interrupts
        whoever is washing on it right now.
        """
        _require_staff(actor)
        now = now or datetime.now()

        valid = [MachineStatus.AVAILABLE.value] + sorted(OUT_OF_SERVICE)
        if status not in valid:
            raise ValidationError(f"Status must be one of: {', '.join(valid)}.")

        machine = MachineService.get_machine(machine_code)
        with machine_locks.hold(machine.id):
            machine = load_for_update(Machine, machine.id)
            previous = machine.status

            if status not in OUT_OF_SERVICE:
                if previous == MachineStatus.IN_USE.value:
                    raise ConflictError("Machine is in use. End the session first.", code='MACHINE_BUSY')
                machine.status = status
                machine.maintenance_note = None
                commit()
                current_app.logger.info("Machine %s back in service (was %s)", machine.code, previous)
                return machine

            cancelled = MachineService._cancel_upcoming(machine, status, actor, now)

            live = WashSession.query.filter(
                WashSession.machine_id == machine.id,
                WashSession.status.in_(LIVE_SESSION_STATUSES),
            ).all()
            for wash_session in live:
                SessionService.interrupt_session(wash_session.id, actor=actor, reason=status, now=now)

            machine = load_for_update(Machine, machine.id)
            machine.release()
            machine.status = status
            machine.maintenance_note = note
            machine.last_maintenance_at = now
            commit()

        current_app.logger.warning(
            "Machine %s set to %s by user %s: %s bookings cancelled, %s sessions interrupted",
            machine.code, status, actor.id, len(cancelled), len(live),
        )
        for booking in cancelled:
            NotificationService.notify(
                booking.user_id,
                NotificationType.MAINTENANCE_ALERT,
                'Booking Cancelled',
                f"Your booking on {machine.name} has been cancelled due to {status}. "
                "Please rebook on another machine.",
                {'booking_id': booking.id, 'machine_code': machine.code, 'reason': status},
            )
        return machine

    @staticmethod
    def _cancel_upcoming(machine, status, actor, now, reason=None):
        bookings = Booking.query.filter(
            Booking.machine_id == machine.id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.end_time > now,
        ).all()
        for booking in bookings:
            booking.transition(BookingStatus.CANCELLED)
            booking.cancelled_at = now
            booking.cancel_reason = reason or f"Machine set to {status} by {actor.role}"
        commit()
        return bookings

    @staticmethod
    def delete_machine(machine_code, actor):
        _require_staff(actor)
        machine = MachineService.get_machine(machine_code)
        with machine_locks.hold(machine.id):
            machine = load_for_update(Machine, machine.id)
            if machine.status == MachineStatus.IN_USE.value:
                raise ConflictError("Cannot delete a machine that is currently in use.", code='MACHINE_BUSY')
            db.session.delete(machine)
            commit()
        current_app.logger.info("Machine %s deleted by user %s", machine_code, actor.id)

    @staticmethod
    def emergency_shutdown(actor, now=None):
        """
        Stop every live session, cancel every upcoming booking and disable
        every machine. Undo with `emergency_reset`.
        """
        _require_staff(actor)
        now = now or datetime.now()
        disabled = MachineStatus.DISABLED.value
        cancelled = []
        stopped = 0

        machines = Machine.query.order_by(Machine.id).all()
        for machine in machines:
            with machine_locks.hold(machine.id):
                machine = load_for_update(Machine, machine.id)
                cancelled += MachineService._cancel_upcoming(
                    machine, disabled, actor, now, reason='Emergency shutdown'
                )
                live = WashSession.query.filter(
                    WashSession.machine_id == machine.id,
                    WashSession.status.in_(LIVE_SESSION_STATUSES),
                ).all()
                for wash_session in live:
                    SessionService.force_stop_session(wash_session.id, actor, now=now)
                stopped += len(live)

                machine = load_for_update(Machine, machine.id)
                machine.release()
                machine.status = disabled
                machine.maintenance_note = 'Emergency shutdown'
                machine.last_maintenance_at = now
                commit()

        current_app.logger.warning(
            "Emergency shutdown by user %s: %s machines disabled, %s sessions stopped, %s bookings cancelled",
            actor.id, len(machines), stopped, len(cancelled),
        )
        for booking in cancelled:
            NotificationService.notify(
                booking.user_id,
                NotificationType.EMERGENCY,
                'Emergency Shutdown',
                "All machines have been shut down. Your booking has been cancelled.",
                {'booking_id': booking.id},
            )
        return {
            'machines_disabled': len(machines),
            'sessions_stopped': stopped,
            'bookings_cancelled': len(cancelled),
        }

    @staticmethod
    def emergency_reset(actor):
        """Put every disabled machine back in service. Returns how many."""
        _require_staff(actor)
        disabled = Machine.query.filter(Machine.status == MachineStatus.DISABLED.value).order_by(Machine.id).all()
        reset = 0
        for machine in disabled:
            with machine_locks.hold(machine.id):
                machine = load_for_update(Machine, machine.id)
                if machine.status != MachineStatus.DISABLED.value:
                    continue
                machine.release()
                machine.maintenance_note = None
                commit()
                reset += 1
        current_app.logger.warning("Emergency reset by user %s: %s machines re-enabled", actor.id, reset)
        return reset

    @staticmethod
    def record_heartbeat(machine_code, now=None):
        """The reader bridge checks in; mark the machine reachable."""
        machine = MachineService.get_machine(machine_code)
        with machine_locks.hold(machine.id):
            machine = load_for_update(Machine, machine.id)
            if not machine.is_online:
                current_app.logger.info("Machine %s is online", machine.code)
            machine.is_online = True
            machine.last_heartbeat = now or datetime.now()
            commit()
        return machine
