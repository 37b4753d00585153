"""Access token issuing and validation."""

import base64
import json
from datetime import timedelta

import jwt
import pytest

from utils.exceptions import InvalidTokenError
from utils.tokens import TokenIssuer, TokenValidator

SECRET = "unit-test-secret-that-is-long-enough-0123456789"
OTHER_SECRET = "another-secret-that-is-also-long-enough-987654"


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(SECRET, access_ttl=timedelta(minutes=15), issuer="auth-api", clock=clock)


@pytest.fixture
def validator(clock):
    return TokenValidator(SECRET, issuer="auth-api", clock=clock)


def _b64(data):
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class TestIssue:
    def test_claims_round_trip(self, issuer, validator, clock):
        token = issuer.issue_access_token("user-1", "alice@example.com")
        claims = validator.validate(token)

        assert claims.user_id == "user-1"
        assert claims.email == "alice@example.com"
        assert claims.issued_at == clock.now
        assert claims.expires_at == clock.now + 900

    def test_token_carries_type_and_issuer(self, issuer):
        token = issuer.issue_access_token("user-1", "alice@example.com")
        payload = jwt.decode(token, options={"verify_signature": False})

        assert payload["type"] == "access"
        assert payload["iss"] == "auth-api"

    def test_expires_in_matches_ttl(self, issuer):
        assert issuer.expires_in == 900

    def test_rejects_asymmetric_algorithm(self):
        with pytest.raises(ValueError):
            TokenIssuer(SECRET, algorithm="RS256")

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            TokenIssuer("")
        with pytest.raises(ValueError):
            TokenValidator("")

    def test_issue_pair_without_store_fails(self, issuer):
        with pytest.raises(RuntimeError):
            issuer.issue_pair("user-1", "alice@example.com")


class TestExpiry:
    def test_valid_until_one_second_before_exp(self, issuer, validator, clock):
        token = issuer.issue_access_token("user-1", "alice@example.com")
        clock.now += 899
        assert validator.validate(token).user_id == "user-1"

    def test_rejected_at_exp(self, issuer, validator, clock):
        token = issuer.issue_access_token("user-1", "alice@example.com")
        clock.now += 900
        with pytest.raises(InvalidTokenError) as exc:
            validator.validate(token)
        assert exc.value.reason == "expired"

    def test_rejected_after_exp(self, issuer, validator, clock):
        token = issuer.issue_access_token("user-1", "alice@example.com")
        clock.now += 3600
        with pytest.raises(InvalidTokenError):
            validator.validate(token)


class TestRejection:
    def test_other_hmac_algorithm_rejected(self, validator, clock):
        token = jwt.encode(
            {"sub": "user-1", "iat": clock.now, "exp": clock.now + 60, "type": "access", "iss": "auth-api"},
            SECRET,
            algorithm="HS512",
        )
        with pytest.raises(InvalidTokenError) as exc:
            validator.validate(token)
        assert exc.value.reason == "unexpected_algorithm"

    def test_alg_none_rejected(self, validator, clock):
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "user-1", "iat": clock.now, "exp": clock.now + 60, "type": "access"})
        with pytest.raises(InvalidTokenError):
            validator.validate(f"{header}.{payload}.")

    def test_wrong_secret_rejected(self, validator, clock):
        other = TokenIssuer(OTHER_SECRET, issuer="auth-api", clock=clock)
        with pytest.raises(InvalidTokenError):
            validator.validate(other.issue_access_token("user-1", "alice@example.com"))

    def test_tampered_payload_rejected(self, issuer, validator):
        header, _, signature = issuer.issue_access_token("user-1", "alice@example.com").split(".")
        forged = _b64({"sub": "admin", "iat": 0, "exp": 9_999_999_999, "type": "access", "iss": "auth-api"})
        with pytest.raises(InvalidTokenError):
            validator.validate(f"{header}.{forged}.{signature}")

    def test_wrong_type_rejected(self, validator, clock):
        token = jwt.encode(
            {"sub": "user-1", "iat": clock.now, "exp": clock.now + 60, "type": "refresh", "iss": "auth-api"},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError) as exc:
            validator.validate(token)
        assert exc.value.reason == "wrong_type"

    def test_wrong_issuer_rejected(self, validator, clock):
        other = TokenIssuer(SECRET, issuer="someone-else", clock=clock)
        with pytest.raises(InvalidTokenError):
            validator.validate(other.issue_access_token("user-1", "alice@example.com"))

    def test_missing_exp_rejected(self, validator, clock):
        token = jwt.encode({"sub": "user-1", "iat": clock.now, "type": "access", "iss": "auth-api"}, SECRET)
        with pytest.raises(InvalidTokenError):
            validator.validate(token)

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_garbage_rejected(self, validator, token):
        with pytest.raises(InvalidTokenError):
            validator.validate(token)
