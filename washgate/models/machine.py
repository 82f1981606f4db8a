from washgate.extensions import db
from washgate.models.status import MachineStatus
from datetime import datetime


class Machine(db.Model):
    __tablename__ = 'machines'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False)  # e.g. "W1", printed on the reader
    name = db.Column(db.String(64), nullable=False)
    location = db.Column(db.String(128), nullable=False)
    relay_address = db.Column(db.String(64))  # bridge IP driving the power relay
    relay_pin = db.Column(db.Integer, default=0)

    status = db.Column(db.String(20), default=MachineStatus.AVAILABLE.value, nullable=False)

    # Weak references, no foreign keys: bookings and sessions point back at machines.
    current_booking_id = db.Column(db.Integer, nullable=True)
    current_session_id = db.Column(db.Integer, nullable=True)

    is_online = db.Column(db.Boolean, default=False, nullable=False)
    last_heartbeat = db.Column(db.DateTime, nullable=True)

    total_usage_count = db.Column(db.Integer, default=0, nullable=False)
    total_usage_minutes = db.Column(db.Integer, default=0, nullable=False)

    maintenance_note = db.Column(db.String(255))
    last_maintenance_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __mapper_args__ = {'version_id_col': version_id}

    def release(self):
        """Return the machine to service with no booking or session attached."""
        self.status = MachineStatus.AVAILABLE.value
        self.current_booking_id = None
        self.current_session_id = None

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'location': self.location,
            'status': self.status,
            'current_booking_id': self.current_booking_id,
            'current_session_id': self.current_session_id,
            'is_online': self.is_online,
            'last_heartbeat': self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            'total_usage_count': self.total_usage_count,
            'total_usage_minutes': self.total_usage_minutes,
            'maintenance_note': self.maintenance_note,
        }
