from washgate.extensions import db
from washgate.models.status import IssueStatus, ISSUE_TRANSITIONS, check_transition
from datetime import datetime


class Issue(db.Model):
    __tablename__ = 'issues'

    id = db.Column(db.Integer, primary_key=True)
    reported_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machines.id'), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=True)
    session_id = db.Column(db.Integer, db.ForeignKey('wash_sessions.id'), nullable=True)

    issue_type = db.Column(db.String(20), nullable=False)  # water, power, machine-fault, other
    description = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(20), default=IssueStatus.REPORTED.value, nullable=False, index=True)

    verified_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolution_note = db.Column(db.String(255))

    session_paused = db.Column(db.Boolean, default=False, nullable=False)
    priority_rebook_offered = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    machine = db.relationship('Machine', lazy=True)

    def transition(self, target):
        self.status = check_transition(ISSUE_TRANSITIONS, IssueStatus, 'issue', self.status, target)

    def to_dict(self):
        return {
            'id': self.id,
            'reported_by_id': self.reported_by_id,
            'machine_code': self.machine.code if self.machine else None,
            'booking_id': self.booking_id,
            'session_id': self.session_id,
            'issue_type': self.issue_type,
            'description': self.description,
            'status': self.status,
            'resolution_note': self.resolution_note,
            'session_paused': self.session_paused,
            'priority_rebook_offered': self.priority_rebook_offered,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
