from flask import Blueprint, request, jsonify, current_app
from washgate.models import User
from werkzeug.security import check_password_hash
import jwt
from datetime import datetime, timedelta, timezone

auth_bp = Blueprint('auth', __name__)


def issue_token(user):
    return jwt.encode({
        'user_id': user.id,
        'exp': datetime.now(timezone.utc) + timedelta(hours=24)
    }, current_app.config['SECRET_KEY'], algorithm="HS256")


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()

    if not user or not user.password_hash or not check_password_hash(user.password_hash, data.get('password') or ''):
        return jsonify({'message': 'Invalid credentials'}), 401

    if not user.is_active_account:
        return jsonify({'message': f'Account is {user.account_status}'}), 403

    return jsonify({'token': issue_token(user), 'username': user.username, 'role': user.role})
