"""pytest fixtures: an isolated app per test on in-memory SQLite."""

import pytest

from api import create_app
from models import storage

PASSWORD = "Sup3rSecret!"
ADMIN_EMAIL = "admin@example.com"


class RecordingMailer:
    """Collects reset mails instead of sending them."""

    def __init__(self):
        self.sent = []

    def send_password_reset(self, to_email, name, token):
        self.sent.append({"to": to_email, "name": name, "token": token})
        return True


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app():
    app = create_app("testing")
    yield app
    storage.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["auth"]


@pytest.fixture
def mailer(services):
    mailer = RecordingMailer()
    services.reset_manager.mailer = mailer
    return mailer


@pytest.fixture
def make_user(services):
    """Create an account without going through HTTP (no rate limit cost)."""
    def _make(email="alice@example.com", password=PASSWORD, name="Alice"):
        return services.credentials.register(email, password, name)
    return _make


@pytest.fixture
def login(client):
    def _login(email="alice@example.com", password=PASSWORD):
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()
    return _login
