import logging

import pytest
from sqlalchemy.exc import IntegrityError

from scorecheck import db
from scorecheck.models import Notification, NotificationType, Score, ScorePayload
from scorecheck.services.validation import notifier, resolver
from scorecheck.services.validation.notifier import NotificationNotFound


def _payload(score_id):
    return ScorePayload(score_id=score_id, machine_name='Medieval Madness', claimed_value=52_340_110)


def _enqueue(recipient, score_id, kind=NotificationType.SCORE_PENDING_REVIEW):
    note = notifier.enqueue(recipient, kind, _payload(score_id))
    db.session.commit()
    return note.id


def test_enqueue_renders_display_text(make_user, make_score):
    owner = make_user('owner')
    sid = make_score(owner)
    accepted = db.session.get(Notification, _enqueue(owner, sid, NotificationType.SCORE_ACCEPTED))
    declined = db.session.get(Notification, _enqueue(owner, sid, NotificationType.SCORE_DECLINED))
    assert accepted.title == 'Score accepted! 🎉'
    assert accepted.message == 'Your Medieval Madness score of 52,340,110 was verified!'
    assert declined.title == 'Score not verified ❌'
    assert 'did not pass community verification' in declined.message
    assert accepted.to_dict()['payload'] == {
        'score_id': sid,
        'machine_name': 'Medieval Madness',
        'claimed_value': 52_340_110,
    }


def test_one_notification_per_score_and_type(make_user, make_score):
    owner = make_user('owner')
    sid = make_score(owner)
    _enqueue(owner, sid, NotificationType.SCORE_ACCEPTED)
    notifier.enqueue(owner, NotificationType.SCORE_ACCEPTED, _payload(sid))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()
    assert Notification.query.filter_by(score_id=sid).count() == 1


def test_deliver_marks_delivered(make_user, make_score, monkeypatch):
    owner = make_user('owner')
    sid = make_score(owner)
    pushed = []
    monkeypatch.setattr(notifier, '_push', lambda n: pushed.append(n.id))
    nid = _enqueue(owner, sid)
    assert notifier.deliver(nid) is True
    assert pushed == [nid]
    assert db.session.get(Notification, nid).delivered_at is not None


def test_delivery_retried_once_then_logged(make_user, make_score, monkeypatch, caplog):
    owner = make_user('owner')
    sid = make_score(owner)
    attempts = []

    def flaky_push(notification):
        attempts.append(notification.id)
        raise ConnectionError('socket server unreachable')

    monkeypatch.setattr(notifier, '_push', flaky_push)
    nid = _enqueue(owner, sid)
    with caplog.at_level(logging.ERROR):
        assert notifier.deliver(nid) is False
    assert attempts == [nid, nid]
    assert db.session.get(Notification, nid).delivered_at is None
    assert any('[notify-failed]' in r.getMessage() for r in caplog.records)


def test_transient_failure_recovers_on_retry(make_user, make_score, monkeypatch):
    owner = make_user('owner')
    sid = make_score(owner)
    attempts = []

    def flaky_push(notification):
        attempts.append(notification.id)
        if len(attempts) == 1:
            raise ConnectionError('blip')

    monkeypatch.setattr(notifier, '_push', flaky_push)
    assert notifier.deliver(_enqueue(owner, sid)) is True
    assert len(attempts) == 2


def test_delivery_failure_does_not_undo_the_decision(make_user, make_score, monkeypatch):
    owner, ann, ben = make_user('owner'), make_user('ann'), make_user('ben')
    sid = make_score(owner)

    def broken_push(notification):
        raise ConnectionError('down')

    monkeypatch.setattr(notifier, '_push', broken_push)
    resolver.cast_vote(sid, ann, 'approve')
    outcome = resolver.cast_vote(sid, ben, 'approve')
    assert outcome.transitioned
    db.session.expire_all()
    assert db.session.get(Score, sid).validation_state.value == 'accepted'
    note = Notification.query.filter_by(score_id=sid).one()
    assert note.delivered_at is None


def test_deliver_missing_notification(flask_app):
    assert notifier.deliver(12345) is False


def test_read_tracking(make_user, make_score):
    owner, other = make_user('owner'), make_user('other')
    first = _enqueue(owner, make_score(owner))
    second = _enqueue(owner, make_score(owner))
    _enqueue(other, make_score(other))

    assert notifier.unread_count(owner) == 2
    assert [n.id for n in notifier.list_for(owner)] == [second, first]

    assert notifier.mark_read(first, owner).read is True
    assert notifier.unread_count(owner) == 1

    with pytest.raises(NotificationNotFound):
        notifier.mark_read(first, other)

    assert notifier.mark_all_read(owner) == 1
    assert notifier.unread_count(owner) == 0
    assert notifier.unread_count(other) == 1
