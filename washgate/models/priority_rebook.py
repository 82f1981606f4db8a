from washgate.extensions import db
from washgate.models.status import OfferStatus, OFFER_TRANSITIONS, check_transition
from datetime import datetime


class PriorityRebookOffer(db.Model):
    __tablename__ = 'priority_rebook_offers'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    original_booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False)
    # One offer per issue, ever.
    issue_id = db.Column(db.Integer, db.ForeignKey('issues.id'), nullable=False, unique=True)

    offered_machine_id = db.Column(db.Integer, db.ForeignKey('machines.id'), nullable=False)
    offered_start = db.Column(db.DateTime, nullable=False)
    offered_end = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), default=OfferStatus.OFFERED.value, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    new_booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=True)
    responded_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    offered_machine = db.relationship('Machine', lazy=True)

    __mapper_args__ = {'version_id_col': version_id}

    def transition(self, target):
        self.status = check_transition(OFFER_TRANSITIONS, OfferStatus, 'offer', self.status, target)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'original_booking_id': self.original_booking_id,
            'issue_id': self.issue_id,
            'offered_slot': {
                'machine_code': self.offered_machine.code if self.offered_machine else None,
                'start_time': self.offered_start.isoformat(),
                'end_time': self.offered_end.isoformat(),
            },
            'status': self.status,
            'expires_at': self.expires_at.isoformat(),
            'new_booking_id': self.new_booking_id,
        }
