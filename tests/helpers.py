from datetime import datetime, timedelta
from washgate.models import Notification

# Monday morning; every test passes its own clock.
NOW = datetime(2026, 3, 2, 9, 0)


def at(clock, day_offset=0):
    """'10:08' on the test day."""
    hour, minute = (int(part) for part in clock.split(':'))
    return NOW.replace(hour=hour, minute=minute) + timedelta(days=day_offset)


def notifications_for(user_id, notification_type=None):
    query = Notification.query.filter_by(user_id=user_id)
    if notification_type:
        query = query.filter_by(type=getattr(notification_type, 'value', notification_type))
    return query.all()
