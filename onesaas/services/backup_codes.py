"""One-time 2FA recovery codes.

Codes are 8 uppercase hex characters (32 bits of entropy each), shown once and
stored only as SHA-256 digests. A consumed code is removed from the stored set
so it can never authenticate twice (see
``LoginStateMachine.consume_backup_code`` for the atomic write).
"""

import hmac
import secrets
from typing import List, Optional, Sequence

from onesaas.utils.encryption import SecretCodec

BACKUP_CODE_COUNT = 10
BACKUP_CODE_BYTES = 4
LOW_WATERMARK = 3


def generate(count: int = BACKUP_CODE_COUNT) -> List[str]:
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(count)]


def normalize(code: str) -> str:
    """Accept codes typed with spaces, dashes or lowercase letters."""
    return code.replace(" ", "").replace("-", "").upper()


def hash_all(codes: Sequence[str]) -> List[str]:
    return [SecretCodec.hash(normalize(code)) for code in codes]


def find(candidate: Optional[str], hashed_codes: Optional[Sequence[str]]) -> Optional[int]:
    """Return the index of the stored digest matching ``candidate``.

    Every stored digest is compared with ``hmac.compare_digest`` and the scan
    does not stop at the first match, so timing does not reveal the position.
    """
    if not candidate or not hashed_codes:
        return None

    digest = SecretCodec.hash(normalize(candidate))
    match = None
    for index, stored in enumerate(hashed_codes):
        if hmac.compare_digest(digest, stored) and match is None:
            match = index
    return match


def remove(hashed_codes: Sequence[str], index: int) -> List[str]:
    """Copy of ``hashed_codes`` without the entry at ``index``."""
    return [code for i, code in enumerate(hashed_codes) if i != index]


def is_running_low(hashed_codes: Optional[Sequence[str]], threshold: int = LOW_WATERMARK) -> bool:
    """Advisory only."""
    return len(hashed_codes or ()) <= threshold
