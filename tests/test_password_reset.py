"""Password reset: request, redeem, single use, expiry."""

from datetime import timedelta
from unittest.mock import patch

import smtplib

from conftest import PASSWORD
from models.password_reset_token import PasswordResetToken
from utils.mailer import ResetMailer, redact_email
from utils.security import hash_token, utcnow

NEW_PASSWORD = "An0ther-Secret!"
FORGOT_URL = "/api/v1/auth/forgot-password"
RESET_URL = "/api/v1/auth/reset-password"


def reset(client, token, password=NEW_PASSWORD):
    return client.post(RESET_URL, json={"token": token, "newPassword": password})


class TestRequestReset:
    def test_known_email_sends_link(self, client, make_user, mailer):
        make_user()
        resp = client.post(FORGOT_URL, json={"email": "Alice@Example.com"})

        assert resp.status_code == 200
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == "alice@example.com"
        # the raw token never appears in the response
        assert mailer.sent[0]["token"] not in resp.get_data(as_text=True)

    def test_unknown_email_gets_same_answer(self, client, make_user, mailer):
        make_user()
        known = client.post(FORGOT_URL, json={"email": "alice@example.com"})
        unknown = client.post(FORGOT_URL, json={"email": "nobody@example.com"})

        assert unknown.status_code == 200
        assert unknown.get_json() == known.get_json()
        assert len(mailer.sent) == 1

    def test_only_digest_is_stored(self, client, make_user, mailer, services):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        token = mailer.sent[0]["token"]

        store = services.reset_manager.store
        assert store.find_by_hash(token) is None
        assert store.find_by_hash(hash_token(token)) is not None

    def test_new_request_replaces_pending_token(self, client, make_user, mailer):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        first, second = mailer.sent[0]["token"], mailer.sent[1]["token"]

        assert reset(client, first).status_code == 400
        assert reset(client, second).status_code == 200

    def test_invalid_email_is_validation_error(self, client):
        resp = client.post(FORGOT_URL, json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"


class TestRedeemReset:
    def test_reset_changes_password(self, client, make_user, mailer):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})

        assert reset(client, mailer.sent[0]["token"]).status_code == 200

        old = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        new = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": NEW_PASSWORD})
        assert old.status_code == 401
        assert new.status_code == 200

    def test_token_is_single_use(self, client, make_user, mailer):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        token = mailer.sent[0]["token"]

        assert reset(client, token).status_code == 200
        second = reset(client, token, "Yet-An0ther-One!")
        assert second.status_code == 400
        assert second.get_json()["error"] == "INVALID_TOKEN"

    def test_reset_revokes_sessions(self, client, make_user, login, mailer):
        make_user()
        refresh_token = login()["refreshToken"]
        client.post(FORGOT_URL, json={"email": "alice@example.com"})

        reset(client, mailer.sent[0]["token"])
        resp = client.post("/api/v1/auth/refresh", json={"refreshToken": refresh_token})
        assert resp.status_code == 401

    def test_expired_token_rejected(self, client, make_user, mailer, services):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        token = mailer.sent[0]["token"]
        record = services.reset_manager.store.find_by_hash(hash_token(token))
        record.expires_at = utcnow() - timedelta(seconds=1)
        services.reset_manager.store.storage.save()

        resp = reset(client, token)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Invalid or expired token"

    def test_unknown_token_rejected(self, client):
        resp = reset(client, "0" * 64)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_lone_surrogate_token_rejected(self, client):
        resp = reset(client, "\ud800" * 8)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_lone_surrogate_password_rejected_before_token_is_spent(self, client, make_user, mailer, services):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        token = mailer.sent[0]["token"]

        resp = reset(client, token, "\ud800" + NEW_PASSWORD)
        assert resp.status_code == 400
        assert "newPassword" in resp.get_json()["details"]
        assert services.reset_manager.store.find_by_hash(hash_token(token)).used is False

    def test_weak_password_rejected_before_token_is_spent(self, client, make_user, mailer, services):
        make_user()
        client.post(FORGOT_URL, json={"email": "alice@example.com"})
        token = mailer.sent[0]["token"]

        resp = reset(client, token, "short")
        assert resp.status_code == 400
        assert "newPassword" in resp.get_json()["details"]
        record = services.reset_manager.store.find_by_hash(hash_token(token))
        assert record.used is False

    def test_failed_delivery_keeps_generic_answer(self, client, make_user, services):
        make_user()

        class BrokenMailer:
            def send_password_reset(self, to_email, name, token):
                return False

        services.reset_manager.mailer = BrokenMailer()
        resp = client.post(FORGOT_URL, json={"email": "alice@example.com"})
        assert resp.status_code == 200


class TestMailer:
    def test_reset_link(self):
        mailer = ResetMailer(frontend_url="https://app.example.com/")
        assert mailer.reset_link("abc") == "https://app.example.com/reset-password?token=abc"

    def test_unconfigured_mailer_only_logs(self):
        mailer = ResetMailer()
        assert mailer.is_configured is False
        assert mailer.send_password_reset("alice@example.com", "Alice", "abc") is True

    def test_smtp_failure_returns_false(self):
        mailer = ResetMailer(smtp_host="smtp.example.com", from_email="noreply@example.com")
        with patch("utils.mailer.smtplib.SMTP", side_effect=OSError("connection refused")):
            assert mailer.send_password_reset("alice@example.com", "Alice", "abc") is False

    def test_smtp_starttls_delivery(self):
        mailer = ResetMailer(
            smtp_host="smtp.example.com",
            smtp_user="mailer",
            smtp_password="pw",
            from_email="noreply@example.com",
        )
        with patch("utils.mailer.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            assert mailer.send_password_reset("alice@example.com", "Alice", "abc") is True

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        args = server.sendmail.call_args[0]
        assert args[0] == "noreply@example.com"
        assert args[1] == "alice@example.com"

    def test_smtp_exception_returns_false(self):
        mailer = ResetMailer(smtp_host="smtp.example.com", from_email="noreply@example.com")
        with patch("utils.mailer.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value.sendmail.side_effect = smtplib.SMTPException("boom")
            assert mailer.send_password_reset("alice@example.com", "Alice", "abc") is False

    def test_redact_email(self):
        assert redact_email("alice@example.com") == "al***@example.com"
        assert redact_email("garbage") == "redacted"


def test_reset_token_model_defaults(make_user, services):
    user = make_user()
    record = services.reset_manager.store.replace_for_user(user.id, hash_token("x"), utcnow() + timedelta(hours=1))
    assert isinstance(record, PasswordResetToken)
    assert record.used is False
