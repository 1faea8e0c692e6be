"""
Shared pytest fixtures: an app on in-memory SQLite, users and logged-in clients.
"""

import io

import pytest
from PIL import Image

from switchbook_api.app import create_app
from switchbook_api.database import db
from switchbook_api.models import MasterSwitch, MasterSwitchStatus, User, UserRole
from switchbook_api.services.bulk_ingestion import bulk_tracker
from switchbook_api.services.images import upload_limiter, url_validation_limiter

def _reset_counters():
    bulk_tracker.reset()
    upload_limiter.reset()
    url_validation_limiter.reset()

@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'UPLOAD_DIR': str(tmp_path / 'uploads'),
        'UPLOAD_URL_PREFIX': '/uploads',
        'CLOUDINARY': None,
        'MAIL': None,
        'GITHUB_TOKEN': None,
    })
    _reset_counters()
    yield app
    _reset_counters()
    with app.app_context():
        db.session.remove()
        db.drop_all()

@pytest.fixture
def ctx(app):
    """App context for tests that call services directly."""
    with app.app_context():
        yield app

def _create_user(app, username, role=UserRole.USER.value):
    with app.app_context():
        user = User(email=f'{username}@example.com', username=username, role=role)
        user.set_password('password123')
        db.session.add(user)
        db.session.commit()
        return user.id

@pytest.fixture
def user_id(app):
    return _create_user(app, 'alice')

@pytest.fixture
def other_user_id(app):
    return _create_user(app, 'bob')

@pytest.fixture
def admin_id(app):
    return _create_user(app, 'admin', UserRole.ADMIN.value)

@pytest.fixture
def login_as(app):
    """Build a test client whose session belongs to the given user id."""
    def _login(user_id):
        client = app.test_client()
        with client.session_transaction() as sess:
            sess['user_id'] = user_id
        return client
    return _login

@pytest.fixture
def user_client(login_as, user_id):
    return login_as(user_id)

@pytest.fixture
def admin_client(login_as, admin_id):
    return login_as(admin_id)

@pytest.fixture
def make_master(app, admin_id):
    """Insert a master switch directly; approved unless a status is given."""
    def _make(submitted_by=None, status=MasterSwitchStatus.APPROVED.value, **fields):
        with app.app_context():
            master = MasterSwitch(
                status=status,
                submitted_by_id=submitted_by or admin_id,
                approved_by_id=admin_id if status == MasterSwitchStatus.APPROVED.value else None,
                version=1
            )
            master.apply_fields({'name': 'Gateron Yellow', 'manufacturer': 'Gateron',
                               'type': 'LINEAR', 'technology': 'MECHANICAL',
                               'actuation_force': 50.0, **fields})
            db.session.add(master)
            db.session.commit()
            return master.id
    return _make

@pytest.fixture
def image_bytes():
    """Encode a small solid-colour image with Pillow."""
    def _encode(fmt='PNG', size=(64, 48)):
        buffer = io.BytesIO()
        Image.new('RGB', size, (200, 30, 30)).save(buffer, format=fmt)
        return buffer.getvalue()
    return _encode
