"""
Shared fixtures.

Engine-level tests run inside the ``ctx`` app context and share one session.
HTTP tests must NOT hold an app context while using the client: Flask reuses
an already pushed context for requests, and Flask-Login caches the current
user on ``g``, so one client's login would leak into another's requests.
"""

import itertools

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from config import TestConfig
from models.models import (
    STATUS_ASSIGNED,
    STATUS_NOT_ASSIGNED,
    STATUS_RESOLVED,
    Assignment,
    Category,
    Issue,
    db,
)
from services.analytics import AnalyticsAggregator
from services.identity import Identity
from services.lifecycle import LifecycleEngine
from services.store import IssueStore
from services.votes import VoteLedger

PASSWORD = 'secret-password'
# Cheap hash so fixtures stay fast; check_password_hash accepts any method
PASSWORD_HASH = generate_password_hash(PASSWORD, method='pbkdf2:sha256:1000')

_emails = itertools.count(1)


def _create_user(role, name=None, email=None):
    n = next(_emails)
    store = IssueStore(db.session)
    with store.transaction():
        user = store.create_user(
            email or f'{role}{n}@example.com',
            name or f'{role.title()} {n}',
            PASSWORD_HASH,
            role,
        )
    return user


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig, UPLOAD_FOLDER=str(tmp_path / 'uploads'))
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that need separate connections."""
    app = create_app(TestConfig, SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'race.db'}")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# Engine-level fixtures (inside an app context)
# =============================================================================


@pytest.fixture
def store(ctx):
    return IssueStore(db.session)


@pytest.fixture
def lifecycle(store):
    return LifecycleEngine(store, enforce_assignee=True)


@pytest.fixture
def ledger(store):
    return VoteLedger(store)


@pytest.fixture
def analytics(store):
    return AnalyticsAggregator(store)


@pytest.fixture
def make_user(ctx):
    def _make(role='citizen', name=None):
        user = _create_user(role, name)
        return Identity(user_id=user.id, role=user.role)

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user('citizen', 'Jane Citizen')


@pytest.fixture
def admin_a(make_user):
    return make_user('admin', 'Admin A')


@pytest.fixture
def admin_b(make_user):
    return make_user('admin', 'Admin B')


@pytest.fixture
def superadmin(make_user):
    return make_user('superadmin', 'Super Admin')


@pytest.fixture
def make_category(store):
    def _make(name):
        with store.transaction():
            category = store.create_category(name)
        return category.id

    return _make


def build_draft(**overrides):
    draft = {
        'title': 'Pothole on Main St',
        'description': 'Deep pothole next to the bus stop',
        'state': 'california',
        'city': 'san-francisco',
        'reporter_name': 'Jane Citizen',
        'reporter_phone': '555-0100',
        'location': 'Main St & 3rd Ave',
        'priority': 'high',
        'media_urls': ['/uploads/pothole.jpg'],
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def draft():
    return build_draft


@pytest.fixture
def submit(lifecycle, citizen):
    def _submit(reporter=None, **overrides):
        return lifecycle.submit(reporter or citizen, build_draft(**overrides))['id']

    return _submit


@pytest.fixture
def assert_consistent(store):
    """Check the status/assignment/resolution equivalences for one issue."""

    def _check(issue_id):
        db.session.expire_all()
        issue = db.session.get(Issue, issue_id)
        fields = issue.resolution_fields()
        has_assignment = (
            db.session.query(Assignment).filter(Assignment.issue_id == issue_id).count() > 0
        )
        assert all(f is None for f in fields) or all(f is not None for f in fields)
        resolved = all(f is not None for f in fields)
        assert (issue.status == STATUS_RESOLVED) == resolved
        assert (issue.status == STATUS_ASSIGNED) == (has_assignment and not resolved)
        assert (issue.status == STATUS_NOT_ASSIGNED) == (not has_assignment and not resolved)

    return _check


# =============================================================================
# HTTP fixtures (no app context held)
# =============================================================================


@pytest.fixture
def make_account(app):
    def _make(role='citizen', name=None):
        with app.app_context():
            user = _create_user(role, name)
            return {'id': user.id, 'email': user.email, 'role': user.role}

    return _make


@pytest.fixture
def login_as(app, make_account):
    """Return a test client logged in as a fresh account with ``role``."""

    def _login(role='citizen', name=None):
        account = make_account(role, name)
        client = app.test_client()
        response = client.post('/api/login', json={'email': account['email'], 'password': PASSWORD})
        assert response.status_code == 200
        return client, account

    return _login


@pytest.fixture
def seeded_category(app):
    with app.app_context():
        category = Category(name='Roads & Potholes')
        db.session.add(category)
        db.session.commit()
        return category.id
