"""Tests for the token issuer (onesaas/services/tokens.py).

Tests encrypted-payload JWTs:
- Access/refresh round trips
- Payload is encrypted, never readable in the clear
- Token classes are not interchangeable
- Expiry, tampering and foreign-key failures collapse to one error
"""

import base64
import json
import time
from datetime import timedelta

import pytest
from authlib.jose import jwt

from onesaas.exceptions import InvalidOrExpiredTokenError
from onesaas.services.tokens import TokenClaims, TokenIssuer
from onesaas.utils.encryption import SecretCodec

CLAIMS = TokenClaims(user_id="user-1", email="alice@example.com", role="GUEST")


def _payload(token: str) -> dict:
    body = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)))


class TestTokenIssuer:
    """Test suite for TokenIssuer."""

    @pytest.fixture
    def codec(self):
        return SecretCodec("11" * 32)

    @pytest.fixture
    def issuer(self, codec):
        return TokenIssuer(codec, "access-secret", "refresh-secret")

    def test_access_round_trip(self, issuer):
        assert issuer.verify_access(issuer.issue_access(CLAIMS)) == CLAIMS

    def test_refresh_round_trip(self, issuer):
        assert issuer.verify_refresh(issuer.issue_refresh(CLAIMS)) == CLAIMS

    def test_payload_is_single_encrypted_field(self, issuer, codec):
        payload = _payload(issuer.issue_access(CLAIMS))

        assert set(payload) == {"data", "iat", "exp"}
        assert "alice@example.com" not in json.dumps(payload)
        assert json.loads(codec.decrypt(payload["data"])) == {
            "userId": "user-1",
            "email": "alice@example.com",
            "role": "GUEST",
        }

    def test_lifetimes(self, issuer):
        now = 1_700_000_000
        access = _payload(issuer.issue_access(CLAIMS, now=now))
        refresh = _payload(issuer.issue_refresh(CLAIMS, now=now))

        assert access["exp"] - access["iat"] == 15 * 60
        assert refresh["exp"] - refresh["iat"] == 7 * 24 * 3600

    def test_refresh_token_rejected_as_access(self, issuer):
        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(issuer.issue_refresh(CLAIMS))

    def test_access_token_rejected_as_refresh(self, issuer):
        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_refresh(issuer.issue_access(CLAIMS))

    def test_expired_token_rejected(self, issuer):
        issued = int(time.time()) - 3600
        token = issuer.issue_access(CLAIMS, now=issued)

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token)

    def test_token_valid_until_expiry(self, issuer):
        now = int(time.time())
        token = issuer.issue_access(CLAIMS, now=now)

        assert issuer.verify_access(token, now=now + 14 * 60) == CLAIMS
        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token, now=now + 16 * 60)

    def test_tampered_signature_rejected(self, issuer):
        token = issuer.issue_access(CLAIMS)
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{'A' if signature[0] != 'A' else 'B'}{signature[1:]}"

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(tampered)

    def test_payload_under_other_codec_key_rejected(self, issuer):
        """A correctly signed token whose payload was encrypted with another key."""
        foreign = SecretCodec("22" * 32).encrypt(json.dumps(CLAIMS.to_payload()))
        now = int(time.time())
        token = jwt.encode(
            {"alg": "HS256"}, {"data": foreign, "iat": now, "exp": now + 60}, "access-secret"
        ).decode()

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token)

    def test_plaintext_payload_rejected(self, issuer):
        now = int(time.time())
        token = jwt.encode(
            {"alg": "HS256"}, {"data": "plain", "iat": now, "exp": now + 60}, "access-secret"
        ).decode()

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token)

    def test_token_without_expiry_rejected(self, issuer, codec):
        token = jwt.encode(
            {"alg": "HS256"}, {"data": codec.encrypt(json.dumps(CLAIMS.to_payload()))}, "access-secret"
        ).decode()

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "e30.e30."])
    def test_garbage_rejected(self, issuer, token):
        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(token)

    def test_none_algorithm_rejected(self, issuer, codec):
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').rstrip(b"=").decode()
        body = base64.urlsafe_b64encode(
            json.dumps({"data": codec.encrypt("{}"), "exp": int(time.time()) + 60}).encode()
        ).rstrip(b"=").decode()

        with pytest.raises(InvalidOrExpiredTokenError):
            issuer.verify_access(f"{header}.{body}.")

    def test_identical_secrets_refused(self, codec):
        with pytest.raises(ValueError):
            TokenIssuer(codec, "same", "same")

    def test_custom_lifetimes(self, codec):
        issuer = TokenIssuer(codec, "a", "b", access_lifetime=timedelta(seconds=5))
        payload = _payload(issuer.issue_access(CLAIMS, now=1000))

        assert payload["exp"] == 1005
