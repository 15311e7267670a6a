"""Password hashing and strength policy."""

import logging
import re
import secrets
from functools import lru_cache
from typing import NamedTuple, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

# Argon2id with a fixed cost: time_cost=2, memory_cost=102400 (100MB), parallelism=8
ph = PasswordHasher(time_cost=2, memory_cost=102400, parallelism=8)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
SPECIAL_CHARACTERS = r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/~`';]"


class PasswordValidation(NamedTuple):
    valid: bool
    reason: Optional[str] = None


def hash_password(password: str) -> str:
    """Hash a password using Argon2id (salted, slow)."""
    if not password:
        raise ValueError("Password must not be empty")
    return ph.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against an Argon2 hash.

    Argon2 compares digests in constant time. Malformed hashes are treated as
    a mismatch rather than an error.
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return ph.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return ph.hash(secrets.token_urlsafe(16))


def burn_verification_time(plain_password: str) -> None:
    """Run a throwaway verification so unknown accounts cost as much as known ones."""
    verify_password(plain_password or "x", _dummy_hash())


def validate_password(password: str) -> PasswordValidation:
    """Check the registration password policy.

    Used at registration and password changes only; login never reports
    policy reasons.
    """
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        return PasswordValidation(False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        return PasswordValidation(False, f"Password must be at most {MAX_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        return PasswordValidation(False, "Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        return PasswordValidation(False, "Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        return PasswordValidation(False, "Password must contain at least one digit")
    if not re.search(SPECIAL_CHARACTERS, password):
        return PasswordValidation(False, "Password must contain at least one special character")
    return PasswordValidation(True)
