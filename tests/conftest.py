import pytest
from washgate import create_app, db
from washgate.config import TestingConfig
from washgate.models import User, Machine
from washgate.models.status import AccountStatus, Role
from washgate.services.booking_service import BookingService
from washgate.api.routes.auth import issue_token

from helpers import NOW, at


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(username, role=Role.USER.value, rfid_uid=None, status=AccountStatus.ACTIVE.value):
    user = User(
        username=username,
        email=f'{username}@hostel.test',
        role=role,
        rfid_uid=rfid_uid,
        account_status=status,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def resident(app):
    return make_user('asha', rfid_uid='RFID-ASHA')


@pytest.fixture
def other_resident(app):
    return make_user('ben', rfid_uid='RFID-BEN')


@pytest.fixture
def warden(app):
    return make_user('warden', role=Role.WARDEN.value, rfid_uid='RFID-WARDEN')


@pytest.fixture
def machines(app):
    w1 = Machine(code='W1', name='Washer 1', location='Block A')
    w2 = Machine(code='W2', name='Washer 2', location='Block A')
    db.session.add_all([w1, w2])
    db.session.commit()
    return w1, w2


@pytest.fixture
def book(machines):
    """Create a confirmed booking as of NOW: book(user, 'W1', '10:00', 30)."""
    def _book(user, machine_code, start, minutes=30, now=NOW):
        return BookingService.create_booking(user, machine_code, at(start), minutes, now=now)
    return _book


@pytest.fixture
def auth_header():
    def _header(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}
    return _header



@pytest.fixture
def user_factory(app):
    return make_user
