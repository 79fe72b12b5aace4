"""Sanitization helpers for values that reach logs.

Image URIs, container names and backend error bodies all originate outside
the process. They pass through these helpers before being logged:
- Log injection: strip newlines and control characters
- Sensitive data exposure: mask credentials, keeping only a short suffix
"""

import re
from typing import Union


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("registry.local/app\\ninjected")
        'registry.local/appinjected'
    """
    if msg is None:
        return ""

    if isinstance(msg, bytes):
        msg = msg.decode("utf-8", errors="replace")

    # \n, \r, \t and the C0/C1 control ranges
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', str(msg))


def mask_sensitive(value: Union[str, None], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask a secret, showing only its last few characters.

    Args:
        value: Secret to mask (API key, password)
        visible_chars: Number of trailing characters to keep (default: 4)
        mask_char: Character to use for masking (default: "*")

    Returns:
        Masked string, fully masked when the value is short or empty

    Examples:
        >>> mask_sensitive("vf_live_1234567890abcdef")
        '***cdef'
        >>> mask_sensitive(None)
        '***'
    """
    if not value or len(value) <= visible_chars:
        return mask_char * 3

    return f"{mask_char * 3}{value[-visible_chars:]}"
