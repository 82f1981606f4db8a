from contextlib import contextmanager
from datetime import datetime
from flask import current_app
from washgate.models import Issue, WashSession
from washgate.models.status import IssueStatus, IssueType, NotificationType, SessionStatus
from washgate.extensions import db
from washgate.errors import ValidationError, NotFoundError, PermissionDeniedError
from washgate.services.booking_service import BookingService
from washgate.services.notification_service import NotificationService
from washgate.services.session_service import SessionService
from washgate.utils.locks import machine_locks, session_locks
from washgate.utils.transactions import commit, load_for_update

MAX_DESCRIPTION_LENGTH = 500


def _require_staff(actor):
    if not actor.is_staff:
        raise PermissionDeniedError("Only wardens or admins can handle issues.")


class IssueService:

    @staticmethod
    def get_issue(issue_id):
        issue = db.session.get(Issue, issue_id)
        if not issue:
            raise NotFoundError('Issue', issue_id)
        return issue

    @staticmethod
    @contextmanager
    def _hold_session(wash_session):
        if wash_session is None:
            yield
            return
        with machine_locks.hold(wash_session.machine_id), session_locks.hold(wash_session.id):
            yield

    @staticmethod
    def _resolve_session(user, booking_id, session_id):
        """Work out which booking and session a report is about, if any."""
        booking = None
        wash_session = None
        if session_id is not None:
            wash_session = SessionService.get_session(session_id)
        elif booking_id is not None:
            booking = BookingService.get_booking(booking_id)
            if booking.session_id:
                wash_session = db.session.get(WashSession, booking.session_id)

        subject = wash_session or booking
        if subject is not None and subject.user_id != user.id and not user.is_staff:
            raise PermissionDeniedError("You can only report issues on your own bookings.")

        if wash_session is not None:
            booking_id = wash_session.booking_id
        return booking_id, wash_session

    @staticmethod
    def report_issue(user, machine_code, issue_type, description,
                     booking_id=None, session_id=None, now=None):
        """
        Record a problem with a machine.
        A running session it names is paused until the issue is closed.
        """
        now = now or datetime.now()

        valid_types = [t.value for t in IssueType]
        if issue_type not in valid_types:
            raise ValidationError(f"Issue type must be one of: {', '.join(valid_types)}.")
        description = (description or '').strip()
        if not description:
            raise ValidationError("Description is required.")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters.")

        machine = BookingService.get_machine_by_code(machine_code)
        booking_id, wash_session = IssueService._resolve_session(user, booking_id, session_id)
        if wash_session and wash_session.machine_id != machine.id:
            raise ValidationError("The session is not on this machine.")

        issue = Issue(
            reported_by_id=user.id,
            machine_id=machine.id,
            booking_id=booking_id,
            session_id=wash_session.id if wash_session else None,
            issue_type=issue_type,
            description=description,
        )
        with IssueService._hold_session(wash_session):
            db.session.add(issue)
            if wash_session and load_for_update(WashSession, wash_session.id).status == SessionStatus.RUNNING.value:
                # the issue and the pause land in one commit
                try:
                    db.session.flush()
                    issue.session_paused = True
                    SessionService.pause_session(wash_session.id, actor=None, now=now, issue_id=issue.id)
                except Exception:
                    db.session.rollback()
                    raise
            else:
                commit()

        current_app.logger.info(
            "Issue %s (%s) reported on %s by user %s", issue.id, issue_type, machine.code, user.id
        )
        NotificationService.notify(
            user.id,
            NotificationType.ISSUE_REPORTED,
            'Issue Reported',
            f"Your {issue_type} issue on {machine.name} has been reported. A warden will investigate.",
            {'issue_id': issue.id, 'machine_code': machine.code},
        )
        return issue

    @staticmethod
    def verify_issue(issue_id, actor, now=None):
        _require_staff(actor)
        issue = IssueService.get_issue(issue_id)
        issue.transition(IssueStatus.VERIFIED)
        issue.verified_by_id = actor.id
        issue.verified_at = now or datetime.now()
        db.session.commit()
        return issue

    @staticmethod
    def _close(issue_id, actor, target, note, now):
        _require_staff(actor)
        now = now or datetime.now()
        issue = IssueService.get_issue(issue_id)
        issue.transition(target)
        issue.resolved_by_id = actor.id
        issue.resolved_at = now
        issue.resolution_note = note
        db.session.commit()

        if issue.session_paused and issue.session_id:
            wash_session = db.session.get(WashSession, issue.session_id, populate_existing=True)
            if (wash_session.status == SessionStatus.PAUSED.value
                    and wash_session.interrupted_by_issue_id == issue.id):
                SessionService.resume_session(wash_session.id, actor=None, now=now)

        current_app.logger.info("Issue %s %s by user %s", issue.id, issue.status, actor.id)
        return issue

    @staticmethod
    def resolve_issue(issue_id, actor, resolution_note=None, now=None):
        issue = IssueService._close(issue_id, actor, IssueStatus.RESOLVED, resolution_note or '', now)
        NotificationService.notify(
            issue.reported_by_id,
            NotificationType.ISSUE_RESOLVED,
            'Issue Resolved',
            f"Your reported issue has been resolved. {issue.resolution_note}".strip(),
            {'issue_id': issue.id},
        )
        return issue

    @staticmethod
    def dismiss_issue(issue_id, actor, resolution_note=None, now=None):
        return IssueService._close(
            issue_id, actor, IssueStatus.DISMISSED, resolution_note or 'Issue dismissed', now
        )

    @staticmethod
    def get_user_issues(user_id):
        return Issue.query.filter(Issue.reported_by_id == user_id).order_by(
            Issue.created_at.desc(), Issue.id.desc()
        ).all()

    @staticmethod
    def get_all_issues(status=None, machine_code=None):
        query = Issue.query
        if status:
            query = query.filter(Issue.status == status)
        if machine_code:
            machine = BookingService.get_machine_by_code(machine_code)
            query = query.filter(Issue.machine_id == machine.id)
        return query.order_by(Issue.created_at.desc(), Issue.id.desc()).all()
