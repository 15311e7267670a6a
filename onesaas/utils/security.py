"""Log hygiene helpers."""

import re
from typing import Union


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection where user-supplied values (usernames, emails,
    key names) carry newlines or control characters into the log stream.

    Examples:
        >>> sanitize_log_message("alice\\nadmin logged in")
        'aliceadmin logged in'
    """
    if msg is None:
        return ""

    return re.sub(r"[\n\r\t\x00-\x1f\x7f-\x9f]", "", str(msg))


def mask_email(email: Union[str, None]) -> str:
    """Mask the local part of an email for logging (``a***@example.com``)."""
    if not email:
        return ""
    local, sep, domain = sanitize_log_message(email).partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"
