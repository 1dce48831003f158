"""Mail nickname derivation for new groups."""
from __future__ import annotations

import re

MAX_NICKNAME_LENGTH = 64
SEPARATOR = "."
LEADING_PREFIX = "grp."

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9]")
_REPEATED_SEPARATORS = re.compile(r"\.{2,}")


def normalize_mail_nickname(display_name: str) -> str:
    """Derive a mail nickname from a display name.

    The result contains only ASCII letters, digits and single ``.`` separators,
    starts with a letter and is at most 64 characters long. Applying the
    function to its own output returns the same value.
    """

    cleaned = _INVALID_CHARS.sub(SEPARATOR, display_name or "")
    cleaned = _REPEATED_SEPARATORS.sub(SEPARATOR, cleaned).strip(SEPARATOR)
    if not cleaned or not cleaned[0].isalpha():
        cleaned = LEADING_PREFIX + cleaned
    return cleaned[:MAX_NICKNAME_LENGTH].rstrip(SEPARATOR)


__all__ = ["MAX_NICKNAME_LENGTH", "normalize_mail_nickname"]
