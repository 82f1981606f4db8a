from washgate.extensions import db
from washgate.models.status import AccountStatus, Role, STAFF_ROLES
from datetime import datetime


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(20), default=Role.USER.value)  # user, warden, admin
    account_status = db.Column(db.String(20), default=AccountStatus.PENDING.value)

    # Badge credential read by the machine's RFID reader
    rfid_uid = db.Column(db.String(64), unique=True, nullable=True, index=True)
    room_number = db.Column(db.String(20))

    total_bookings = db.Column(db.Integer, default=0, nullable=False)
    total_sessions = db.Column(db.Integer, default=0, nullable=False)
    no_show_count = db.Column(db.Integer, default=0, nullable=False)
    has_priority_rebook = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @classmethod
    def increment(cls, user_id, counter, amount=1):
        """Bump a counter column in SQL so concurrent writers do not lose updates."""
        column = getattr(cls, counter)
        cls.query.filter(cls.id == user_id).update({column: column + amount}, synchronize_session=False)

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    @property
    def is_active_account(self):
        return self.account_status == AccountStatus.ACTIVE.value

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'account_status': self.account_status,
            'rfid_assigned': bool(self.rfid_uid),
            'room_number': self.room_number,
            'total_bookings': self.total_bookings,
            'total_sessions': self.total_sessions,
            'no_show_count': self.no_show_count,
            'has_priority_rebook': self.has_priority_rebook,
        }
