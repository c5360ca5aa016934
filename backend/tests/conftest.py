import os
import sys
import pytest

# Ensure the backend root (containing the `scorecheck` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from scorecheck import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    APPROVALS_TO_ACCEPT = 2
    REJECTIONS_TO_DECLINE = 2
    REVIEW_QUEUE_LIMIT = 50
    PRECHECK_URL = ''
    PRECHECK_API_KEY = ''
    PRECHECK_MODEL = 'test-model'
    PRECHECK_TIMEOUT_SEC = 2
    PRECHECK_MAX_IMAGE_BYTES = 1024
    NOTIFICATION_DELIVERY_ATTEMPTS = 2
    VOTE_CONFLICT_RETRIES = 3


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import scorecheck.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def web_app():
    """App for HTTP and socket tests.

    No app context stays pushed, so every request gets its own ``g`` and
    session the way it does when served.
    """
    application = create_app(TestConfig)
    with application.app_context():
        import scorecheck.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.drop_all()


@pytest.fixture()
def client(web_app):
    return web_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    """Create a user and return its id."""
    from scorecheck.models import User

    def _make(username, password='password'):
        user = User(username=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id

    return _make


@pytest.fixture()
def make_score(flask_app):
    """Insert a pending score directly, bypassing intake."""
    from scorecheck.models import Score

    def _make(owner_id, machine_name='Medieval Madness', claimed_value=52_340_110):
        score = Score(owner_id=owner_id, machine_name=machine_name, claimed_value=claimed_value)
        db.session.add(score)
        db.session.commit()
        return score.id

    return _make


@pytest.fixture()
def login_client(web_app):
    """Register a user and return a test client logged in as them."""

    def _login(username):
        test_client = web_app.test_client()
        res = test_client.post('/register', json={'username': username, 'password': 'password'})
        assert res.status_code == 201
        test_client.user_id = res.get_json()['user']['id']
        return test_client

    return _login


@pytest.fixture()
def sio_client(web_app):
    test_client = socketio.test_client(
        web_app,
        flask_test_client=web_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
