from datetime import datetime, timedelta
from flask import current_app
from washgate.models import Booking, Machine, PriorityRebookOffer, User, WashSession
from washgate.models.status import BookingStatus, MachineStatus, NotificationType, OfferStatus
from washgate.extensions import db
from washgate.errors import ConflictError, NotFoundError, PermissionDeniedError
from washgate.services.booking_service import BookingService
from washgate.services.issue_service import IssueService
from washgate.services.notification_service import NotificationService
from washgate.utils.locks import user_locks, machine_locks
from washgate.utils.transactions import commit, load_for_update

# Bookings that can stand in as "the one the issue spoiled".
FALLBACK_BOOKING_STATUSES = (
    BookingStatus.ACTIVE.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.COMPLETED.value,
    BookingStatus.INTERRUPTED.value,
)


def clear_priority_flag(user_id, keep_offer_id=None):
    """Drop the user's priority flag unless another offer is still open."""
    query = PriorityRebookOffer.query.filter(
        PriorityRebookOffer.user_id == user_id,
        PriorityRebookOffer.status == OfferStatus.OFFERED.value,
    )
    if keep_offer_id is not None:
        query = query.filter(PriorityRebookOffer.id != keep_offer_id)
    if query.count() == 0:
        User.query.filter(User.id == user_id).update(
            {User.has_priority_rebook: False}, synchronize_session=False
        )


class RebookService:

    @staticmethod
    def get_offer(offer_id):
        offer = db.session.get(PriorityRebookOffer, offer_id)
        if not offer:
            raise NotFoundError('Priority rebook offer', offer_id)
        return offer

    @staticmethod
    def find_best_slot(duration_minutes, now):
        """Earliest free slot across available machines; the lowest machine id wins a tie."""
        machines = Machine.query.filter(
            Machine.status == MachineStatus.AVAILABLE.value
        ).order_by(Machine.id).all()
        if not machines:
            raise ConflictError("No machines available for rebooking.", code='NO_MACHINE')

        best = None
        for machine in machines:
            start, end = BookingService.next_free_slot(machine.id, duration_minutes, after=now)
            if best is None or start < best[1]:
                best = (machine, start, end)
        return best

    @staticmethod
    def find_original_booking_id(issue):
        if issue.booking_id:
            return issue.booking_id
        if issue.session_id:
            wash_session = db.session.get(WashSession, issue.session_id)
            if wash_session:
                return wash_session.booking_id
        fallback = Booking.query.filter(
            Booking.user_id == issue.reported_by_id,
            Booking.machine_id == issue.machine_id,
            Booking.status.in_(FALLBACK_BOOKING_STATUSES),
        ).order_by(Booking.start_time.desc(), Booking.created_at.desc()).first()
        return fallback.id if fallback else None

    @staticmethod
    def offer_priority_rebook(issue_id, actor, now=None):
        """Offer the reporter of an issue the earliest free slot on any working machine."""
        if not actor.is_staff:
            raise PermissionDeniedError("Only wardens or admins can offer a priority rebook.")
        now = now or datetime.now()
        cfg = current_app.config

        issue = IssueService.get_issue(issue_id)
        existing = PriorityRebookOffer.query.filter_by(issue_id=issue.id).first()
        if issue.priority_rebook_offered or existing:
            raise ConflictError("Priority rebook already offered for this issue.", code='ALREADY_OFFERED')

        machine, start, end = RebookService.find_best_slot(cfg['PRIORITY_REBOOK_DURATION_MINUTES'], now)

        original_booking_id = RebookService.find_original_booking_id(issue)
        if not original_booking_id:
            raise ConflictError(
                "Cannot offer priority rebook because no related booking was found.",
                code='NO_ORIGINAL_BOOKING',
            )

        offer = PriorityRebookOffer(
            user_id=issue.reported_by_id,
            original_booking_id=original_booking_id,
            issue_id=issue.id,
            offered_machine_id=machine.id,
            offered_start=start,
            offered_end=end,
            status=OfferStatus.OFFERED.value,
            expires_at=now + timedelta(minutes=cfg['PRIORITY_OFFER_TTL_MINUTES']),
        )
        db.session.add(offer)
        issue.priority_rebook_offered = True
        User.query.filter(User.id == issue.reported_by_id).update(
            {User.has_priority_rebook: True}, synchronize_session=False
        )
        commit()

        current_app.logger.info(
            "Priority rebook %s offered to user %s on %s at %s", offer.id, offer.user_id, machine.code, start
        )
        NotificationService.notify(
            offer.user_id,
            NotificationType.PRIORITY_REBOOK,
            'Priority Rebooking Available',
            f"A free slot is available on {machine.name} at {start:%H:%M}. Would you like to rebook?",
            {
                'offer_id': offer.id,
                'machine_code': machine.code,
                'start_time': start.isoformat(),
                'end_time': end.isoformat(),
            },
        )
        return offer

    @staticmethod
    def respond_to_offer(offer_id, user, accept, now=None):
        """
        Accept or decline an open offer.
        Returns the new booking when accepted, otherwise None.
        """
        now = now or datetime.now()
        offer = RebookService.get_offer(offer_id)
        if offer.user_id != user.id:
            raise PermissionDeniedError("Not authorized.")

        with user_locks.hold(user.id), machine_locks.hold(offer.offered_machine_id):
            offer = load_for_update(PriorityRebookOffer, offer.id)
            if offer.status != OfferStatus.OFFERED.value:
                raise ConflictError("This offer is no longer available.", code='OFFER_CLOSED')

            if now > offer.expires_at:
                offer.transition(OfferStatus.EXPIRED)
                clear_priority_flag(user.id, keep_offer_id=offer.id)
                commit()
                raise ConflictError("This offer has expired.", code='OFFER_EXPIRED')

            if not accept:
                offer.transition(OfferStatus.DECLINED)
                offer.responded_at = now
                clear_priority_flag(user.id, keep_offer_id=offer.id)
                commit()
                current_app.logger.info("Priority rebook %s declined", offer.id)
                return None

            if not BookingService.is_available(offer.offered_machine_id, offer.offered_start, offer.offered_end):
                raise ConflictError(
                    "The offered slot has been taken meanwhile. Please book manually.",
                    code='SLOT_TAKEN',
                )

            booking = Booking(
                user_id=user.id,
                machine_id=offer.offered_machine_id,
                slot_date=offer.offered_start.date(),
                start_time=offer.offered_start,
                end_time=offer.offered_end,
                duration_minutes=round((offer.offered_end - offer.offered_start).total_seconds() / 60),
                status=BookingStatus.CONFIRMED.value,
                is_priority=True,
            )
            db.session.add(booking)
            db.session.flush()

            offer.transition(OfferStatus.ACCEPTED)
            offer.new_booking_id = booking.id
            offer.responded_at = now
            clear_priority_flag(user.id, keep_offer_id=offer.id)
            User.increment(user.id, 'total_bookings')
            commit()

        current_app.logger.info("Priority rebook %s accepted as booking %s", offer.id, booking.id)
        NotificationService.notify(
            user.id,
            NotificationType.BOOKING_CONFIRMED,
            'Priority Booking Confirmed',
            f"Your priority slot is booked from {booking.start_time:%H:%M} to {booking.end_time:%H:%M}.",
            {'booking_id': booking.id, 'offer_id': offer.id},
        )
        return booking

    @staticmethod
    def get_pending_offers(user_id, now=None):
        now = now or datetime.now()
        return PriorityRebookOffer.query.filter(
            PriorityRebookOffer.user_id == user_id,
            PriorityRebookOffer.status == OfferStatus.OFFERED.value,
            PriorityRebookOffer.expires_at >= now,
        ).order_by(PriorityRebookOffer.expires_at).all()
