from washgate.extensions import db
from washgate.models.status import SessionStatus, SESSION_TRANSITIONS, check_transition
from datetime import datetime
import math


class WashSession(db.Model):
    """Live occupation of a machine, one-to-one with an active booking."""
    __tablename__ = 'wash_sessions'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machines.id'), nullable=False, index=True)

    status = db.Column(db.String(20), default=SessionStatus.RUNNING.value, nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=False)
    scheduled_end_at = db.Column(db.DateTime, nullable=False)
    extended_end_at = db.Column(db.DateTime, nullable=True)
    actual_end_at = db.Column(db.DateTime, nullable=True)

    paused_at = db.Column(db.DateTime, nullable=True)
    resumed_at = db.Column(db.DateTime, nullable=True)
    total_paused_minutes = db.Column(db.Integer, default=0, nullable=False)

    extension_granted = db.Column(db.Boolean, default=False, nullable=False)
    extension_minutes = db.Column(db.Integer, default=0, nullable=False)

    duration_minutes = db.Column(db.Integer, default=0, nullable=False)
    terminated_by = db.Column(db.String(10), nullable=True)  # user, staff, auto
    interrupted_by_issue_id = db.Column(db.Integer, nullable=True)
    # Effective end that the "ending soon" reminder was last sent for
    ending_reminder_for = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    machine = db.relationship('Machine', lazy=True)

    __mapper_args__ = {'version_id_col': version_id}

    @property
    def effective_end(self):
        return self.extended_end_at or self.scheduled_end_at

    @property
    def is_live(self):
        return self.status in (SessionStatus.RUNNING.value, SessionStatus.PAUSED.value)

    def transition(self, target):
        self.status = check_transition(SESSION_TRANSITIONS, SessionStatus, 'session', self.status, target)

    def remaining_minutes(self, now):
        remaining = (self.effective_end - now).total_seconds() / 60
        return max(0, math.ceil(remaining))

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'user_id': self.user_id,
            'machine_id': self.machine_id,
            'machine_code': self.machine.code if self.machine else None,
            'status': self.status,
            'started_at': self.started_at.isoformat(),
            'scheduled_end_at': self.scheduled_end_at.isoformat(),
            'extended_end_at': self.extended_end_at.isoformat() if self.extended_end_at else None,
            'effective_end': self.effective_end.isoformat(),
            'actual_end_at': self.actual_end_at.isoformat() if self.actual_end_at else None,
            'paused_at': self.paused_at.isoformat() if self.paused_at else None,
            'total_paused_minutes': self.total_paused_minutes,
            'extension_granted': self.extension_granted,
            'duration_minutes': self.duration_minutes,
            'terminated_by': self.terminated_by,
        }
