"""Time-driven state changes.

Each sweep selects the ids that look due, then handles them one by one: take the
entity's lock, re-read it, check it is still due, change it and commit. A row
that moved on in the meantime is skipped, and a failure on one row is logged
without stopping the rest of the sweep.
"""
from datetime import datetime, timedelta
from flask import current_app
from washgate.models import Booking, Machine, PriorityRebookOffer, User, WashSession
from washgate.models.status import BookingStatus, NotificationType, OfferStatus, SessionStatus
from washgate.extensions import db
from washgate.services.notification_service import NotificationService
from washgate.services.rebook_service import clear_priority_flag
from washgate.services.session_service import SessionService
from washgate.utils.locks import machine_locks, session_locks
from washgate.utils.transactions import commit, load_for_update


def _effective_end_column():
    return db.func.coalesce(WashSession.extended_end_at, WashSession.scheduled_end_at)


def _minutes_past(start, now):
    return (now - start).total_seconds() / 60


class ReconciliationService:

    @staticmethod
    def _each(name, ids, handle):
        """Run `handle(id)` for every id; count the ones that changed something."""
        changed = 0
        for ident in ids:
            try:
                if handle(ident):
                    changed += 1
            except Exception:
                db.session.rollback()
                current_app.logger.exception("%s sweep failed on %s", name, ident)
        if changed:
            current_app.logger.info("%s sweep changed %s rows", name, changed)
        return changed

    @staticmethod
    def sweep_no_shows(now=None):
        """Warn late users, then release their slot once the grace period runs out."""
        now = now or datetime.now()
        cfg = current_app.config
        grace = cfg['GRACE_PERIOD_MINUTES']
        reminder = cfg['REMINDER_BEFORE_MINUTES']

        due = [row.id for row in Booking.query.filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_time <= now,
        ).with_entities(Booking.id).all()]

        def handle(booking_id):
            booking = db.session.get(Booking, booking_id)
            with machine_locks.hold(booking.machine_id):
                booking = load_for_update(Booking, booking_id)
                if booking.status != BookingStatus.CONFIRMED.value or booking.start_time > now:
                    return False
                minutes_past = _minutes_past(booking.start_time, now)

                if minutes_past >= grace:
                    booking.transition(BookingStatus.NO_SHOW)
                    booking.no_show_at = now
                    User.increment(booking.user_id, 'no_show_count')
                    machine = load_for_update(Machine, booking.machine_id)
                    if machine.current_booking_id == booking.id and machine.current_session_id is None:
                        machine.release()
                    commit()
                    current_app.logger.info("Booking %s marked no-show", booking.id)
                    NotificationService.notify(
                        booking.user_id,
                        NotificationType.SLOT_RELEASED,
                        'Booking Cancelled',
                        f"Your booking on {booking.machine.name} was cancelled due to no-show.",
                        {'booking_id': booking.id},
                    )
                    return True

                if minutes_past >= reminder and booking.reminder_sent_at is None:
                    booking.reminder_sent_at = now
                    commit()
                    NotificationService.notify(
                        booking.user_id,
                        NotificationType.NO_SHOW_WARNING,
                        'Arrive Now!',
                        f"You have {grace - reminder} minutes to arrive at {booking.machine.name} "
                        "or your booking will be cancelled.",
                        {'booking_id': booking.id},
                    )
                    return True
                return False

        return ReconciliationService._each('no-show', due, handle)

    @staticmethod
    def _locked_running_session(session_id):
        wash_session = db.session.get(WashSession, session_id)
        return machine_locks.hold(wash_session.machine_id), session_locks.hold(session_id)

    @staticmethod
    def sweep_expired_sessions(now=None):
        """End running sessions that reached their effective end."""
        now = now or datetime.now()
        due = [row.id for row in WashSession.query.filter(
            WashSession.status == SessionStatus.RUNNING.value,
            _effective_end_column() <= now,
        ).with_entities(WashSession.id).all()]

        def handle(session_id):
            machine_lock, session_lock = ReconciliationService._locked_running_session(session_id)
            with machine_lock, session_lock:
                wash_session = load_for_update(WashSession, session_id)
                if wash_session.status != SessionStatus.RUNNING.value or wash_session.effective_end > now:
                    return False
                SessionService.end_session(session_id, actor=None, now=now)
                return True

        return ReconciliationService._each('expired-session', due, handle)

    @staticmethod
    def sweep_ending_soon(now=None):
        """Remind users once per effective end that their session is about to stop."""
        now = now or datetime.now()
        window = timedelta(minutes=current_app.config['ENDING_SOON_MINUTES'])
        extension = current_app.config['EXTENSION_MINUTES']
        end_column = _effective_end_column()

        due = [row.id for row in WashSession.query.filter(
            WashSession.status == SessionStatus.RUNNING.value,
            end_column >= now,
            end_column <= now + window,
        ).with_entities(WashSession.id).all()]

        def handle(session_id):
            machine_lock, session_lock = ReconciliationService._locked_running_session(session_id)
            with machine_lock, session_lock:
                wash_session = load_for_update(WashSession, session_id)
                end = wash_session.effective_end
                if (wash_session.status != SessionStatus.RUNNING.value
                        or not now <= end <= now + window
                        or wash_session.ending_reminder_for == end):
                    return False
                wash_session.ending_reminder_for = end
                commit()

            remaining = wash_session.remaining_minutes(now)
            can_extend = not wash_session.extension_granted
            message = f"Your session on {wash_session.machine.name} will end in ~{remaining} minutes."
            if can_extend:
                message += f" You can extend by {extension} minutes."
            NotificationService.notify(
                wash_session.user_id,
                NotificationType.SESSION_ENDING,
                'Session Ending Soon',
                message,
                {'session_id': wash_session.id, 'can_extend': can_extend, 'remaining_minutes': remaining},
            )
            return True

        return ReconciliationService._each('ending-soon', due, handle)

    @staticmethod
    def sweep_expired_offers(now=None):
        now = now or datetime.now()
        due = [row.id for row in PriorityRebookOffer.query.filter(
            PriorityRebookOffer.status == OfferStatus.OFFERED.value,
            PriorityRebookOffer.expires_at <= now,
        ).with_entities(PriorityRebookOffer.id).all()]

        def handle(offer_id):
            offer = load_for_update(PriorityRebookOffer, offer_id)
            if offer.status != OfferStatus.OFFERED.value or offer.expires_at > now:
                return False
            offer.transition(OfferStatus.EXPIRED)
            clear_priority_flag(offer.user_id, keep_offer_id=offer.id)
            commit()
            return True

        return ReconciliationService._each('expired-offer', due, handle)

    @staticmethod
    def sweep_heartbeats(now=None):
        """Mark machines offline when their bridge stopped checking in."""
        now = now or datetime.now()
        cutoff = now - timedelta(minutes=current_app.config['HEARTBEAT_TIMEOUT_MINUTES'])
        due = [row.id for row in Machine.query.filter(
            Machine.is_online == True,  # noqa: E712
            db.or_(Machine.last_heartbeat == None, Machine.last_heartbeat <= cutoff),  # noqa: E711
        ).with_entities(Machine.id).all()]

        def handle(machine_id):
            with machine_locks.hold(machine_id):
                machine = load_for_update(Machine, machine_id)
                if not machine.is_online or (machine.last_heartbeat and machine.last_heartbeat > cutoff):
                    return False
                machine.is_online = False
                commit()
                current_app.logger.warning("Machine %s went offline", machine.code)
                return True

        return ReconciliationService._each('heartbeat', due, handle)

    @staticmethod
    def run_all(now=None):
        now = now or datetime.now()
        return {
            'no_shows': ReconciliationService.sweep_no_shows(now),
            'expired_sessions': ReconciliationService.sweep_expired_sessions(now),
            'ending_soon': ReconciliationService.sweep_ending_soon(now),
            'expired_offers': ReconciliationService.sweep_expired_offers(now),
            'heartbeats': ReconciliationService.sweep_heartbeats(now),
        }
