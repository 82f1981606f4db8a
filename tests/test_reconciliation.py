from washgate import db
from washgate.models import Booking, Machine, User, WashSession
from washgate.models.status import BookingStatus, MachineStatus, NotificationType, SessionStatus
from washgate.services.reconciliation import ReconciliationService
from washgate.services.session_service import SessionService

from helpers import at, notifications_for


def test_no_show_after_grace(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    assert ReconciliationService.sweep_no_shows(now=at('10:09')) == 1  # reminder only
    assert db.session.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value

    assert ReconciliationService.sweep_no_shows(now=at('10:11')) == 1
    booking = db.session.get(Booking, booking.id)
    assert booking.status == BookingStatus.NO_SHOW.value
    assert booking.no_show_at == at('10:11')
    assert db.session.get(User, resident.id).no_show_count == 1
    assert len(notifications_for(resident.id, NotificationType.SLOT_RELEASED)) == 1

    # already handled
    assert ReconciliationService.sweep_no_shows(now=at('10:12')) == 0
    assert db.session.get(User, resident.id).no_show_count == 1


def test_reminder_is_sent_once(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    assert ReconciliationService.sweep_no_shows(now=at('10:04')) == 0
    assert ReconciliationService.sweep_no_shows(now=at('10:05')) == 1
    assert ReconciliationService.sweep_no_shows(now=at('10:07')) == 0
    assert db.session.get(Booking, booking.id).reminder_sent_at == at('10:05')
    assert len(notifications_for(resident.id, NotificationType.NO_SHOW_WARNING)) == 1


def test_late_sweep_skips_stale_reminder(resident, book):
    book(resident, 'W1', '10:00', 30)
    ReconciliationService.sweep_no_shows(now=at('10:20'))
    assert notifications_for(resident.id, NotificationType.NO_SHOW_WARNING) == []
    assert len(notifications_for(resident.id, NotificationType.SLOT_RELEASED)) == 1


def test_started_booking_is_not_a_no_show(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    SessionService.start_session(booking.id, now=at('10:02'))
    assert ReconciliationService.sweep_no_shows(now=at('10:15')) == 0
    assert db.session.get(Booking, booking.id).status == BookingStatus.ACTIVE.value


def test_expired_session_is_ended_automatically(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    wash_session = SessionService.start_session(booking.id, now=at('10:00'))

    assert ReconciliationService.sweep_expired_sessions(now=at('10:29')) == 0
    assert ReconciliationService.sweep_expired_sessions(now=at('10:30')) == 1

    wash_session = db.session.get(WashSession, wash_session.id)
    assert wash_session.status == SessionStatus.COMPLETED.value
    assert wash_session.terminated_by == 'auto'
    assert db.session.get(Machine, wash_session.machine_id).status == MachineStatus.AVAILABLE.value


def test_extended_session_runs_until_new_end(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    wash_session = SessionService.start_session(booking.id, now=at('10:00'))
    SessionService.extend_session(wash_session.id, resident, now=at('10:25'))

    assert ReconciliationService.sweep_expired_sessions(now=at('10:31')) == 0
    assert ReconciliationService.sweep_expired_sessions(now=at('10:35')) == 1


def test_paused_session_is_not_ended(resident, warden, book):
    booking = book(resident, 'W1', '10:00', 30)
    wash_session = SessionService.start_session(booking.id, now=at('10:00'))
    SessionService.pause_session(wash_session.id, actor=warden, now=at('10:20'))
    assert ReconciliationService.sweep_expired_sessions(now=at('10:45')) == 0


def test_ending_soon_reminder(resident, book):
    booking = book(resident, 'W1', '10:00', 30)
    wash_session = SessionService.start_session(booking.id, now=at('10:00'))

    assert ReconciliationService.sweep_ending_soon(now=at('10:24')) == 0
    assert ReconciliationService.sweep_ending_soon(now=at('10:26')) == 1
    assert ReconciliationService.sweep_ending_soon(now=at('10:27')) == 0

    reminders = notifications_for(resident.id, NotificationType.SESSION_ENDING)
    assert len(reminders) == 1
    assert reminders[0].data['can_extend'] is True

    # a new end gets a new reminder
    SessionService.extend_session(wash_session.id, resident, now=at('10:28'))
    assert ReconciliationService.sweep_ending_soon(now=at('10:31')) == 1
    latest = notifications_for(resident.id, NotificationType.SESSION_ENDING)
    assert sorted(n.data['can_extend'] for n in latest) == [False, True]


def test_heartbeat_timeout(machines):
    w1, w2 = machines
    w1.is_online = True
    w1.last_heartbeat = at('10:00')
    w2.is_online = True
    db.session.commit()

    # w2 never checked in
    assert ReconciliationService.sweep_heartbeats(now=at('10:09')) == 1
    assert ReconciliationService.sweep_heartbeats(now=at('10:10')) == 1
    assert not db.session.get(Machine, w1.id).is_online
    assert not db.session.get(Machine, w2.id).is_online


def test_one_failure_does_not_stop_the_sweep(app):
    seen = []

    def handle(ident):
        seen.append(ident)
        if ident == 2:
            raise RuntimeError('boom')
        return True

    assert ReconciliationService._each('test', [1, 2, 3], handle) == 2
    assert seen == [1, 2, 3]


def test_run_all(resident, book):
    book(resident, 'W1', '10:00', 30)
    counts = ReconciliationService.run_all(now=at('10:11'))
    assert counts == {
        'no_shows': 1,
        'expired_sessions': 0,
        'ending_soon': 0,
        'expired_offers': 0,
        'heartbeats': 0,
    }
