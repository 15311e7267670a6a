"""API key format: ``sk_live_`` followed by 64 lowercase hex characters."""

import re
import secrets
from typing import NamedTuple

from onesaas.utils.encryption import SecretCodec

API_KEY_PREFIX = "sk_live_"
_API_KEY_PATTERN = re.compile(r"^sk_live_[a-f0-9]{64}\Z")


class GeneratedApiKey(NamedTuple):
    key: str
    key_hash: str
    key_prefix: str


def generate_api_key() -> GeneratedApiKey:
    """Create a new raw key with its storage digest and display prefix.

    The raw key must be shown to the caller once and then discarded.
    """
    key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return GeneratedApiKey(key=key, key_hash=SecretCodec.hash(key), key_prefix=get_key_prefix(key))


def is_valid_api_key_format(key: str) -> bool:
    if not isinstance(key, str):
        return False
    return _API_KEY_PATTERN.match(key) is not None


def get_key_prefix(key: str) -> str:
    """Non-secret display form: first 15 characters plus ``...``."""
    return f"{key[:15]}..."
