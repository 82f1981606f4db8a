from washgate.extensions import db
from washgate.models.status import BookingStatus, BOOKING_TRANSITIONS, check_transition
from datetime import datetime


def _iso(value):
    return value.isoformat() if value else None


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machines.id'), nullable=False)

    slot_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)
    duration_minutes = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default=BookingStatus.CONFIRMED.value, nullable=False, index=True)
    session_id = db.Column(db.Integer, nullable=True)
    is_priority = db.Column(db.Boolean, default=False, nullable=False)

    rfid_scanned_at = db.Column(db.DateTime, nullable=True)
    arrived_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)
    no_show_at = db.Column(db.DateTime, nullable=True)
    reminder_sent_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', lazy=True)
    machine = db.relationship('Machine', lazy=True)

    __table_args__ = (
        db.Index('ix_bookings_machine_window', 'machine_id', 'start_time', 'end_time'),
    )
    __mapper_args__ = {'version_id_col': version_id}

    def transition(self, target):
        self.status = check_transition(BOOKING_TRANSITIONS, BookingStatus, 'booking', self.status, target)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'machine_id': self.machine_id,
            'machine_code': self.machine.code if self.machine else None,
            'slot_date': self.slot_date.isoformat(),
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'duration_minutes': self.duration_minutes,
            'status': self.status,
            'session_id': self.session_id,
            'is_priority': self.is_priority,
            'arrived_at': _iso(self.arrived_at),
            'cancelled_at': _iso(self.cancelled_at),
            'cancel_reason': self.cancel_reason,
            'no_show_at': _iso(self.no_show_at),
        }
