from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from scorecheck.services.validation import notifier
from scorecheck.services.validation.errors import ScoreValidationError


notifications = Blueprint('notifications', __name__)


@notifications.errorhandler(ScoreValidationError)
def handle_validation_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@notifications.route('', methods=['GET'])
@login_required
def list_notifications():
    return jsonify([n.to_dict() for n in notifier.list_for(current_user.id)])


@notifications.route('/unread-count', methods=['GET'])
@login_required
def unread_count():
    return jsonify({'unread': notifier.unread_count(current_user.id)})


@notifications.route('/<int:notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    notification = notifier.mark_read(notification_id, current_user.id)
    return jsonify(notification.to_dict())


@notifications.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    return jsonify({'updated': notifier.mark_all_read(current_user.id)})
