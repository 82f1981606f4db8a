from datetime import datetime, timedelta
from werkzeug.security import generate_password_hash
from washgate import db
from washgate.models.status import AccountStatus


def tomorrow_at(hour, minute=0):
    return (datetime.now() + timedelta(days=1)).replace(hour=hour, minute=minute, second=0, microsecond=0)


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'app': 'WashGate'}


def test_login(client, resident):
    resident.password_hash = generate_password_hash('soap')
    db.session.commit()

    response = client.post('/api/auth/login', json={'username': 'asha', 'password': 'soap'})
    assert response.status_code == 200
    assert response.get_json()['token']

    response = client.post('/api/auth/login', json={'username': 'asha', 'password': 'nope'})
    assert response.status_code == 401


def test_login_pending_account(client, user_factory):
    user = user_factory('newbie', status=AccountStatus.PENDING.value)
    user.password_hash = generate_password_hash('soap')
    db.session.commit()
    response = client.post('/api/auth/login', json={'username': 'newbie', 'password': 'soap'})
    assert response.status_code == 403


def test_token_required(client, machines):
    assert client.get('/api/machines/').status_code == 401
    response = client.get('/api/machines/', headers={'Authorization': 'Bearer garbage'})
    assert response.status_code == 401


def test_blocked_user_is_refused(client, resident, auth_header):
    resident.account_status = AccountStatus.BLOCKED.value
    db.session.commit()
    assert client.get('/api/bookings/my_bookings', headers=auth_header(resident)).status_code == 403


def test_create_booking_over_http(client, resident, other_resident, machines, auth_header):
    payload = {'machine_code': 'W1', 'start_time': tomorrow_at(10).isoformat(), 'duration_minutes': 30}
    response = client.post('/api/bookings/', json=payload, headers=auth_header(resident))
    assert response.status_code == 201
    body = response.get_json()
    assert body['status'] == 'confirmed'

    # inside the 10 minute buffer after 10:30
    clash = dict(payload, start_time=tomorrow_at(10, 35).isoformat())
    response = client.post('/api/bookings/', json=clash, headers=auth_header(other_resident))
    assert response.status_code == 409
    assert response.get_json()['code'] == 'SLOT_TAKEN'

    response = client.post('/api/bookings/', json={'machine_code': 'W1'}, headers=auth_header(resident))
    assert response.status_code == 400

    bad_duration = dict(payload, start_time=tomorrow_at(14).isoformat(), duration_minutes=90)
    response = client.post('/api/bookings/', json=bad_duration, headers=auth_header(resident))
    assert response.status_code == 400
    assert response.get_json()['code'] == 'VALIDATION_ERROR'


def test_other_users_booking_is_hidden(client, resident, other_resident, machines, auth_header):
    payload = {'machine_code': 'W1', 'start_time': tomorrow_at(10).isoformat(), 'duration_minutes': 30}
    booking_id = client.post('/api/bookings/', json=payload, headers=auth_header(resident)).get_json()['id']
    response = client.get(f'/api/bookings/{booking_id}', headers=auth_header(other_resident))
    assert response.status_code == 403
    assert client.get('/api/bookings/9999', headers=auth_header(resident)).status_code == 404


def test_staff_only_routes(client, resident, warden, machines, auth_header):
    assert client.get('/api/bookings/all', headers=auth_header(resident)).status_code == 403
    assert client.get('/api/bookings/all', headers=auth_header(warden)).status_code == 200

    response = client.put('/api/admin/machines/W1/status', json={'status': 'repair'},
                          headers=auth_header(resident))
    assert response.status_code == 403
    response = client.put('/api/admin/machines/W1/status', json={'status': 'repair', 'maintenance_note': 'Leak'},
                          headers=auth_header(warden))
    assert response.status_code == 200
    assert response.get_json()['machine']['status'] == 'repair'


def test_scan_status_mapping(client, resident, machines):
    response = client.post('/api/rfid/scan', json={'credentialId': 'RFID-ASHA', 'machineId': 'W1'})
    assert response.status_code == 403
    body = response.get_json()
    assert body['action'] == 'DENY'
    assert body['reasonCode'] == 'NO_BOOKING'
    assert 'durationMinutes' not in body

    response = client.post('/api/rfid/scan', json={'credentialId': 'RFID-ASHA', 'machineId': 'W9'})
    assert response.status_code == 404
    assert response.get_json()['reasonCode'] == 'UNKNOWN_MACHINE'

    response = client.post('/api/rfid/scan', json={'machineId': 'W1'})
    assert response.status_code == 400

    response = client.post('/api/rfid/scan', json={'rfidUID': 'MASTER-0000', 'machineId': 'W1'})
    assert response.status_code == 200
    assert response.get_json()['action'] == 'MASTER_ACCESS'


def test_heartbeat_needs_no_token(client, machines):
    response = client.post('/api/machines/W1/heartbeat')
    assert response.status_code == 200
    assert response.get_json()['machine_status'] == 'available'
    assert client.post('/api/machines/W9/heartbeat').status_code == 404


def test_booking_with_utc_offset_is_a_validation_error(client, resident, machines, auth_header):
    payload = {'machine_code': 'W1', 'start_time': tomorrow_at(10).isoformat() + '+00:00', 'duration_minutes': 30}
    response = client.post('/api/bookings/', json=payload, headers=auth_header(resident))
    assert response.status_code == 400
    assert response.get_json()['code'] == 'VALIDATION_ERROR'

    payload['start_time'] = tomorrow_at(10).isoformat() + 'Z'
    response = client.post('/api/bookings/', json=payload, headers=auth_header(resident))
    assert response.status_code == 400
