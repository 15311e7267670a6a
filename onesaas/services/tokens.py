"""Session token issuance and verification.

Tokens are HS256 JWTs whose only custom claim, ``data``, is the
codec-encrypted JSON of ``{"userId", "email", "role"}``. Access and refresh
tokens are signed with different secrets and have different lifetimes, so one
class is never accepted where the other is required.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from authlib.jose import JoseError, JsonWebToken

from onesaas.config import ACCESS_TOKEN_LIFETIME, REFRESH_TOKEN_LIFETIME
from onesaas.exceptions import CryptoError, InvalidOrExpiredTokenError
from onesaas.utils.encryption import SecretCodec

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

# Restricting the accepted algorithms prevents "alg" substitution
_jwt = JsonWebToken([JWT_ALGORITHM])


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str
    role: str

    def to_payload(self) -> dict:
        return {"userId": self.user_id, "email": self.email, "role": self.role}

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        return cls(
            user_id=str(payload["userId"]),
            email=str(payload["email"]),
            role=str(payload["role"]),
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = int(ACCESS_TOKEN_LIFETIME.total_seconds())


class TokenIssuer:
    """Issues and verifies encrypted-payload JWTs. Holds no mutable state."""

    def __init__(
        self,
        codec: SecretCodec,
        access_secret: str,
        refresh_secret: str,
        access_lifetime: timedelta = ACCESS_TOKEN_LIFETIME,
        refresh_lifetime: timedelta = REFRESH_TOKEN_LIFETIME,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("JWT secrets must not be empty")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens require distinct signing secrets")
        self._codec = codec
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime

    def issue_access(self, claims: TokenClaims, now: Optional[float] = None) -> str:
        return self._issue(claims, self._access_secret, self.access_lifetime, now)

    def issue_refresh(self, claims: TokenClaims, now: Optional[float] = None) -> str:
        return self._issue(claims, self._refresh_secret, self.refresh_lifetime, now)

    def issue_pair(self, claims: TokenClaims) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(claims),
            refresh_token=self.issue_refresh(claims),
            expires_in=int(self.access_lifetime.total_seconds()),
        )

    def verify_access(self, token: str, now: Optional[float] = None) -> TokenClaims:
        """Raises InvalidOrExpiredTokenError on any failure."""
        return self._verify(token, self._access_secret, now)

    def verify_refresh(self, token: str, now: Optional[float] = None) -> TokenClaims:
        """Raises InvalidOrExpiredTokenError on any failure."""
        return self._verify(token, self._refresh_secret, now)

    def _issue(self, claims: TokenClaims, secret: str, lifetime: timedelta,
               now: Optional[float]) -> str:
        issued_at = int(now if now is not None else time.time())
        payload = {
            "data": self._codec.encrypt(json.dumps(claims.to_payload())),
            "iat": issued_at,
            "exp": issued_at + int(lifetime.total_seconds()),
        }
        encoded = _jwt.encode({"alg": JWT_ALGORITHM, "typ": "JWT"}, payload, secret)
        return encoded.decode("utf-8") if isinstance(encoded, bytes) else encoded

    def _verify(self, token: str, secret: str, now: Optional[float]) -> TokenClaims:
        if not token:
            raise InvalidOrExpiredTokenError()

        # Signature first; the payload is only decrypted once it is authentic
        try:
            claims = _jwt.decode(token, secret)
            claims.validate(now=int(now if now is not None else time.time()))
        except JoseError as e:
            logger.debug("Token rejected: %s", type(e).__name__)
            raise InvalidOrExpiredTokenError()
        except (ValueError, TypeError) as e:
            logger.debug("Malformed token: %s", type(e).__name__)
            raise InvalidOrExpiredTokenError()

        if "exp" not in claims or not isinstance(claims.get("data"), str):
            raise InvalidOrExpiredTokenError()

        try:
            payload = json.loads(self._codec.decrypt(claims["data"]))
            return TokenClaims.from_payload(payload)
        except CryptoError:
            logger.warning("Authentic token carried an undecryptable payload")
            raise InvalidOrExpiredTokenError()
        except (ValueError, KeyError, TypeError):
            raise InvalidOrExpiredTokenError()
