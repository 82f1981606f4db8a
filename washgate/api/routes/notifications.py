from flask import Blueprint, request, jsonify
from washgate.services.notification_service import NotificationService
from washgate.utils.decorators import token_required

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('/', methods=['GET'])
@token_required
def my_notifications(current_user):
    unread_only = request.args.get('unread_only') == 'true'
    notifications = NotificationService.get_user_notifications(current_user.id, unread_only=unread_only)
    return jsonify({
        'notifications': [n.to_dict() for n in notifications],
        'unread_count': NotificationService.unread_count(current_user.id),
    })


@notifications_bp.route('/unread_count', methods=['GET'])
@token_required
def unread_count(current_user):
    return jsonify({'unread_count': NotificationService.unread_count(current_user.id)})


@notifications_bp.route('/<int:notification_id>/read', methods=['PUT'])
@token_required
def mark_read(current_user, notification_id):
    notification = NotificationService.mark_read(notification_id, current_user.id)
    return jsonify(notification.to_dict())


@notifications_bp.route('/read_all', methods=['PUT'])
@token_required
def mark_all_read(current_user):
    marked = NotificationService.mark_all_read(current_user.id)
    return jsonify({'message': 'All notifications marked as read', 'marked': marked})


@notifications_bp.route('/<int:notification_id>', methods=['DELETE'])
@token_required
def delete_notification(current_user, notification_id):
    NotificationService.delete_notification(notification_id, current_user.id)
    return jsonify({'message': 'Notification deleted'})
