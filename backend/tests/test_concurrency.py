import threading

import pytest

from conftest import TestConfig
from scorecheck import create_app, db
from scorecheck.models import Notification, NotificationType, Score, User, ValidationState, Vote
from scorecheck.services.validation import resolver
from scorecheck.services.validation.errors import ScoreAlreadyResolved


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database so each thread gets its own connection."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'scorecheck.db'}"
        # Writers queue on SQLite's database lock instead of failing fast
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30}}

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.drop_all()
        db.engine.dispose()


def _seed(app, voter_count):
    with app.app_context():
        users = []
        for name in ['owner'] + [f'voter{i}' for i in range(voter_count)]:
            user = User(username=name)
            user.set_password('password')
            db.session.add(user)
            users.append(user)
        db.session.commit()
        owner, voters = users[0], users[1:]
        score = Score(owner_id=owner.id, machine_name='Medieval Madness', claimed_value=52_340_110)
        db.session.add(score)
        db.session.commit()
        return score.id, [v.id for v in voters]


def test_parallel_votes_resolve_once(file_app):
    sid, voters = _seed(file_app, 6)
    barrier = threading.Barrier(len(voters))
    results = {}

    def vote(voter_id):
        with file_app.app_context():
            barrier.wait()
            try:
                results[voter_id] = resolver.cast_vote(sid, voter_id, 'approve')
            except Exception as exc:  # checked below
                results[voter_id] = exc

    threads = [threading.Thread(target=vote, args=(v,)) for v in voters]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not any(t.is_alive() for t in threads)
    assert len(results) == len(voters)

    outcomes = [r for r in results.values() if not isinstance(r, Exception)]
    losers = [r for r in results.values() if isinstance(r, Exception)]
    assert all(isinstance(r, ScoreAlreadyResolved) for r in losers), losers

    # Quorum is two: one vote leaves it pending, the next resolves it, everyone after loses
    assert sum(1 for o in outcomes if o.transitioned) == 1
    assert [o.state for o in outcomes if not o.transitioned] == [ValidationState.PENDING]
    assert len(losers) == len(voters) - 2

    with file_app.app_context():
        assert db.session.get(Score, sid).validation_state == ValidationState.ACCEPTED
        assert Vote.query.filter_by(score_id=sid).count() == 2
        notes = Notification.query.filter_by(score_id=sid).all()
        assert [n.type for n in notes] == [NotificationType.SCORE_ACCEPTED]

    # A late voter still finds the score resolved
    with file_app.app_context():
        with pytest.raises(ScoreAlreadyResolved):
            resolver.cast_vote(sid, voters[0], 'reject')
