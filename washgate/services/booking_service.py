from datetime import datetime, timedelta
from flask import current_app
from washgate.models import Machine, Booking, User
from washgate.models.status import BookingStatus, HOLDING_STATUSES, OUT_OF_SERVICE, NotificationType
from washgate.extensions import db
from washgate.errors import ValidationError, NotFoundError, ConflictError, PermissionDeniedError
from washgate.services import intervals
from washgate.services.notification_service import NotificationService
from washgate.utils.locks import user_locks, machine_locks
from washgate.utils.transactions import commit, load_for_update


class BookingService:

    @staticmethod
    def get_machine_by_code(machine_code):
        machine = Machine.query.filter_by(code=machine_code).first()
        if not machine:
            raise NotFoundError('Machine', machine_code)
        return machine

    @staticmethod
    def held_windows(machine_id, exclude_booking_id=None, ending_after=None):
        """(start, end) of every confirmed/active booking on the machine."""
        query = Booking.query.filter(
            Booking.machine_id == machine_id,
            Booking.status.in_(HOLDING_STATUSES),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        if ending_after is not None:
            query = query.filter(Booking.end_time > ending_after)
        rows = query.with_entities(Booking.start_time, Booking.end_time).order_by(Booking.start_time).all()
        return [(row.start_time, row.end_time) for row in rows]

    @staticmethod
    def is_available(machine_id, start_time, end_time, buffer_minutes=None, exclude_booking_id=None):
        """Check if the machine is free during the interval, buffer included."""
        if buffer_minutes is None:
            buffer_minutes = current_app.config['BUFFER_BETWEEN_SLOTS_MINUTES']
        windows = BookingService.held_windows(machine_id, exclude_booking_id=exclude_booking_id)
        return intervals.find_conflict(start_time, end_time, windows, buffer_minutes) is None

    @staticmethod
    def next_free_slot(machine_id, duration_minutes, after=None, buffer_minutes=None):
        """Earliest (start, end) on the machine at or after `after`."""
        after = after or datetime.now()
        if buffer_minutes is None:
            buffer_minutes = current_app.config['BUFFER_BETWEEN_SLOTS_MINUTES']
        # Windows that ended less than one buffer ago still push the candidate back.
        windows = BookingService.held_windows(
            machine_id, ending_after=after - timedelta(minutes=buffer_minutes)
        )
        start = intervals.first_free_start(after, duration_minutes, windows, buffer_minutes)
        return start, start + timedelta(minutes=duration_minutes)

    @staticmethod
    def count_user_bookings_on(user_id, day):
        """Non-cancelled bookings the user holds on a calendar day."""
        return Booking.query.filter(
            Booking.user_id == user_id,
            Booking.slot_date == day,
            Booking.status != BookingStatus.CANCELLED.value,
        ).count()

    @staticmethod
    def find_user_overlap(user_id, start_time, end_time):
        return Booking.query.filter(
            Booking.user_id == user_id,
            Booking.status.in_(HOLDING_STATUSES),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        ).first()

    @staticmethod
    def validate_duration(duration_minutes):
        cfg = current_app.config
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("Duration must be a whole number of minutes.")
        if not cfg['MIN_BOOKING_MINUTES'] <= duration_minutes <= cfg['MAX_BOOKING_MINUTES']:
            raise ValidationError(
                f"Duration must be between {cfg['MIN_BOOKING_MINUTES']} and {cfg['MAX_BOOKING_MINUTES']} minutes."
            )

    @staticmethod
    def create_booking(user, machine_code, start_time, duration_minutes, now=None):
        """
        Main entry point to book a machine.
        Rules are checked in a fixed order and the first failure wins.
        """
        now = now or datetime.now()
        cfg = current_app.config

        # 0. Input shape
        BookingService.validate_duration(duration_minutes)
        if start_time.tzinfo is not None:
            raise ValidationError("Start time must be a local time without a UTC offset.")

        # 1. Credential
        if not user.rfid_uid:
            raise ValidationError("RFID not assigned. Contact the warden to get your card.", code='NO_CREDENTIAL')

        # 2. Machine
        machine = BookingService.get_machine_by_code(machine_code)
        if machine.status in OUT_OF_SERVICE:
            raise ValidationError(f"Machine is {machine.status}.", code='MACHINE_UNAVAILABLE')

        # 3. Not in the past
        if start_time < now:
            raise ValidationError("Cannot book a slot in the past.", code='START_IN_PAST')

        # 4. Advance horizon
        max_days = cfg['MAX_ADVANCE_BOOKING_DAYS']
        if start_time > now + timedelta(days=max_days):
            raise ValidationError(f"Cannot book more than {max_days} days in advance.", code='TOO_FAR_AHEAD')

        end_time = start_time + timedelta(minutes=duration_minutes)

        with user_locks.hold(user.id), machine_locks.hold(machine.id):
            # 5. Daily cap
            max_per_day = cfg['MAX_BOOKINGS_PER_DAY']
            if BookingService.count_user_bookings_on(user.id, start_time.date()) >= max_per_day:
                raise ValidationError(f"Maximum {max_per_day} bookings per day reached.", code='DAILY_LIMIT')

            # 6. Machine window, buffer included
            if not BookingService.is_available(machine.id, start_time, end_time):
                raise ConflictError(
                    "Selected time slot is not available. Please choose a different time.",
                    code='SLOT_TAKEN',
                )

            # 7. The user cannot be in two places at once
            if BookingService.find_user_overlap(user.id, start_time, end_time):
                raise ConflictError("You already have a booking during this time.", code='USER_OVERLAP')

            booking = Booking(
                user_id=user.id,
                machine_id=machine.id,
                slot_date=start_time.date(),
                start_time=start_time,
                end_time=end_time,
                duration_minutes=duration_minutes,
                status=BookingStatus.CONFIRMED.value,
            )
            db.session.add(booking)
            User.increment(user.id, 'total_bookings')
            commit()

        current_app.logger.info(
            "Booking %s confirmed on %s [%s, %s) for user %s",
            booking.id, machine.code, start_time, end_time, booking.user_id,
        )
        NotificationService.notify(
            booking.user_id,
            NotificationType.BOOKING_CONFIRMED,
            'Booking Confirmed',
            f"Your slot on {machine.name} is booked from {start_time:%H:%M} to {end_time:%H:%M}.",
            {'booking_id': booking.id, 'machine_code': machine.code},
        )
        return booking

    @staticmethod
    def get_booking(booking_id, actor=None):
        booking = db.session.get(Booking, booking_id)
        if not booking:
            raise NotFoundError('Booking', booking_id)
        if actor is not None and not actor.is_staff and booking.user_id != actor.id:
            raise PermissionDeniedError("Not authorized to view this booking.")
        return booking

    @staticmethod
    def cancel_booking(booking_id, actor, reason=None, now=None):
        """Cancel a confirmed booking. Owners cancel their own, staff cancel any."""
        now = now or datetime.now()
        booking = BookingService.get_booking(booking_id)
        if not actor.is_staff and booking.user_id != actor.id:
            raise PermissionDeniedError("Not authorized to cancel this booking.")

        with machine_locks.hold(booking.machine_id):
            booking = load_for_update(Booking, booking.id)
            booking.transition(BookingStatus.CANCELLED)
            booking.cancelled_at = now
            booking.cancel_reason = reason or 'Cancelled by user'
            commit()

        current_app.logger.info("Booking %s cancelled by user %s", booking.id, actor.id)
        return booking

    @staticmethod
    def get_user_bookings(user_id, status=None):
        query = Booking.query.filter(Booking.user_id == user_id)
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.start_time.desc()).all()

    @staticmethod
    def get_all_bookings(status=None, machine_code=None, day=None):
        query = Booking.query
        if status:
            query = query.filter(Booking.status == status)
        if machine_code:
            machine = BookingService.get_machine_by_code(machine_code)
            query = query.filter(Booking.machine_id == machine.id)
        if day:
            query = query.filter(Booking.slot_date == day)
        return query.order_by(Booking.start_time.desc()).all()

    @staticmethod
    def get_machine_schedule(machine_code, day):
        """
        Held windows of a machine on a date, and the blocks they occupy once
        the trailing buffer is added.
        """
        machine = BookingService.get_machine_by_code(machine_code)
        buffer_minutes = current_app.config['BUFFER_BETWEEN_SLOTS_MINUTES']
        day_start = datetime.combine(day, datetime.min.time())
        day_end = day_start + timedelta(days=1)

        bookings = Booking.query.filter(
            Booking.machine_id == machine.id,
            Booking.status.in_(HOLDING_STATUSES),
            Booking.start_time >= day_start,
            Booking.start_time < day_end,
        ).order_by(Booking.start_time).all()

        return {
            'machine': {
                'code': machine.code,
                'name': machine.name,
                'location': machine.location,
                'status': machine.status,
            },
            'date': day.isoformat(),
            'buffer_minutes': buffer_minutes,
            'booked_slots': [
                {
                    'booking_id': b.id,
                    'start_time': b.start_time.isoformat(),
                    'end_time': b.end_time.isoformat(),
                    'status': b.status,
                }
                for b in bookings
            ],
            'occupied_blocks': [
                {
                    'start_time': b.start_time.isoformat(),
                    'end_time': (b.end_time + timedelta(minutes=buffer_minutes)).isoformat(),
                }
                for b in bookings
            ],
        }
