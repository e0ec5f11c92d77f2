# tests/conftest.py

import pytest
from flask import g, has_app_context
from flask.testing import FlaskClient
from flask_caching.backends import SimpleCache

from recruzy import create_app
from recruzy.extensions import cache
from recruzy.extensions import db as _db  # Use _db to avoid conflicts
from tests.fixtures.sample_data import AdminFactory, UserFactory


class FreshLoginClient(FlaskClient):
    """
    Запросы тестового клиента переиспользуют уже открытый app context,
    поэтому кеш Flask-Login в `g` сбрасывается перед каждым запросом.
    """

    def open(self, *args, **kwargs):
        if has_app_context():
            g.pop("_login_user", None)
        return super().open(*args, **kwargs)


@pytest.fixture(scope="session")
def app():
    """
    Creates a test Flask app instance for the entire test session.
    """
    app = create_app("testing")
    app.test_client_class = FreshLoginClient
    with app.app_context():
        _db.create_all()

        yield app

        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="function")
def db_session(app):
    """
    Provides the DB session; every table is emptied after the test, since
    both the tests and the views commit.
    """
    yield _db.session

    _db.session.rollback()
    for table in reversed(_db.metadata.sorted_tables):
        _db.session.execute(table.delete())
    _db.session.commit()
    _db.session.expunge_all()
    g.pop("_login_user", None)


@pytest.fixture(scope="function")
def real_cache(app):
    """
    Подменяет NullCache настоящим SimpleCache, чтобы проверять сброс
    memoize-кеша.
    """
    previous = app.extensions["cache"][cache]
    app.extensions["cache"][cache] = SimpleCache()
    yield app.extensions["cache"][cache]
    app.extensions["cache"][cache] = previous


@pytest.fixture(scope="function")
def client(app, db_session):
    """Creates a standard, unauthenticated test client."""
    return app.test_client()


def _login(app, user):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user.id)
        sess["_fresh"] = True
    return client


@pytest.fixture(scope="function")
def admin_user(db_session):
    return AdminFactory(username="admin", email="admin@test.com")


@pytest.fixture(scope="function")
def regular_user(db_session):
    return UserFactory(username="candidate", email="user@test.com")


@pytest.fixture(scope="function")
def admin_client(app, admin_user):
    """Test client with a pre-authenticated admin session."""
    return _login(app, admin_user)


@pytest.fixture(scope="function")
def user_client(app, regular_user):
    """Test client with a pre-authenticated test-taker session."""
    return _login(app, regular_user)
