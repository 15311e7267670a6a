"""TOTP (RFC 6238) two-factor engine.

Secrets are base32 strings suitable for Google Authenticator, Authy and any
other RFC 6238 app. Codes are 6 digits on a 30 second step, accepted for the
current step and one step either side to tolerate clock drift.
"""

import base64
import binascii
import io
import logging
import re
from datetime import datetime
from typing import Optional, Union

import pyotp
import qrcode
from qrcode.constants import ERROR_CORRECT_L

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
TOTP_DRIFT_TOLERANCE = 1  # Accept codes from +/- this many time steps

_TOKEN_PATTERN = re.compile(r"^[0-9]{6}\Z")


def generate_secret() -> str:
    """Generate a random base32 secret (160 bits)."""
    return pyotp.random_base32()


def provisioning_uri(account_name: str, secret: str, issuer: str = "OneSaaS") -> str:
    """Build the ``otpauth://`` URI an authenticator app enrolls from."""
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
        name=account_name, issuer_name=issuer
    )


def qr_code_data_url(uri: str) -> str:
    """Render a provisioning URI as a PNG data URL."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def verify_token(token: Optional[str], secret: Optional[str],
                 for_time: Optional[Union[int, datetime]] = None) -> bool:
    """Verify a 6-digit code against the current and adjacent time steps.

    Malformed tokens and unusable secrets return False instead of raising.
    pyotp compares codes in constant time.
    """
    if not token or not secret:
        return False

    candidate = token.replace(" ", "")
    if not _TOKEN_PATTERN.match(candidate):
        return False

    try:
        totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
        return totp.verify(candidate, for_time=for_time, valid_window=TOTP_DRIFT_TOLERANCE)
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning("TOTP verification failed on an unusable secret: %s", type(e).__name__)
        return False
