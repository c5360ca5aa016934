"""Notification emitter.

The only writer of ``Notification`` rows. ``enqueue`` stages a row in the
caller's transaction so it commits or rolls back together with the state
change it describes. ``dispatch`` pushes committed rows to the recipient's
socket room after the fact; a failed push is retried and then logged, and
never touches score or vote state.
"""

from typing import Iterable, List

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from tenacity import Retrying, stop_after_attempt, wait_fixed

from scorecheck import db, socketio
from scorecheck.models import Notification, NotificationType, ScorePayload, utcnow
from .errors import ScoreValidationError


class NotificationNotFound(ScoreValidationError):
    """Notification not found"""
    status_code = 404
    code = 'notification_not_found'


_TITLES = {
    NotificationType.SCORE_ACCEPTED: 'Score accepted! 🎉',
    NotificationType.SCORE_DECLINED: 'Score not verified ❌',
    NotificationType.SCORE_PENDING_REVIEW: 'Score submitted',
}


def render(kind: NotificationType, payload: ScorePayload) -> str:
    if kind is NotificationType.SCORE_ACCEPTED:
        return f"Your {payload.machine_name} score of {payload.claimed_value:,} was verified!"
    if kind is NotificationType.SCORE_DECLINED:
        return f"Your {payload.machine_name} score did not pass community verification."
    return f"Your {payload.machine_name} score of {payload.claimed_value:,} is pending verification."


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def enqueue(recipient_id: int, kind: NotificationType, payload: ScorePayload) -> Notification:
    """Stage a notification in the current session; the caller commits."""
    notification = Notification(
        recipient_id=recipient_id,
        type=kind,
        score_id=payload.score_id,
        machine_name=payload.machine_name,
        claimed_value=payload.claimed_value,
        title=_TITLES[kind],
        message=render(kind, payload),
    )
    db.session.add(notification)
    return notification


def dispatch(notification_ids: Iterable[int]) -> None:
    """Push committed notifications without blocking the caller.

    Runs inline under TESTING so tests observe delivery deterministically.
    """
    ids = [nid for nid in notification_ids if nid is not None]
    if not ids:
        return
    app = current_app._get_current_object()
    if app.config.get('TESTING'):
        _deliver_all(app, ids)
    else:
        socketio.start_background_task(_deliver_all, app, ids)


def _deliver_all(app, ids: List[int]) -> None:
    with app.app_context():
        for nid in ids:
            deliver(nid)


def _push(notification: Notification) -> None:
    socketio.emit('notification', notification.to_dict(), to=user_room(notification.recipient_id), namespace='/ws')


def deliver(notification_id: int) -> bool:
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        current_app.logger.warning(f"[notify-missing] notification={notification_id}")
        return False
    attempts = max(1, int(current_app.config.get('NOTIFICATION_DELIVERY_ATTEMPTS', 2)))
    wait = 0 if current_app.config.get('TESTING') else 0.5
    try:
        for attempt in Retrying(stop=stop_after_attempt(attempts), wait=wait_fixed(wait), reraise=True):
            with attempt:
                _push(notification)
    except Exception:
        current_app.logger.exception(
            f"[notify-failed] notification={notification.id} recipient={notification.recipient_id} attempts={attempts}"
        )
        return False

    notification.delivered_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(f"[notify-bookkeeping-failed] notification={notification.id}")
    current_app.logger.info(
        f"[notify] notification={notification.id} recipient={notification.recipient_id} type={notification.type.value}"
    )
    return True


def list_for(recipient_id: int, limit: int = 50) -> List[Notification]:
    return (
        Notification.query.filter_by(recipient_id=recipient_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(recipient_id: int) -> int:
    return Notification.query.filter_by(recipient_id=recipient_id, read=False).count()


def mark_read(notification_id: int, recipient_id: int) -> Notification:
    notification = Notification.query.filter_by(id=notification_id, recipient_id=recipient_id).first()
    if notification is None:
        raise NotificationNotFound()
    if not notification.read:
        notification.read = True
        db.session.commit()
    return notification


def mark_all_read(recipient_id: int) -> int:
    updated = (
        Notification.query.filter_by(recipient_id=recipient_id, read=False)
        .update({'read': True}, synchronize_session=False)
    )
    db.session.commit()
    return updated
