from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from scorecheck import socketio
from scorecheck.services.validation.notifier import user_room


def handle_connect():
    # Authenticated sockets get their own room for notification pushes
    if current_user.is_authenticated:
        room = user_room(current_user.id)
        join_room(room)
        emit('connected', {'message': 'Connected to /ws', 'room': room})
    else:
        emit('connected', {'message': 'Connected to /ws', 'room': None})


def handle_disconnect():
    if current_user.is_authenticated:
        leave_room(user_room(current_user.id))


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')
