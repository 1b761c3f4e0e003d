"""Validation for identifiers that end up in filesystem paths or store keys."""

import re

from .errors import InvalidIdentifierError

_SAFE_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,255}")
_UUID_RE = re.compile(
    r"[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}"
)


def is_safe_storage_id(value: str) -> bool:
    """Return True if ``value`` can be used as a single path segment."""
    if not isinstance(value, str):
        return False
    if value == "." or ".." in value:
        return False
    return _SAFE_ID_RE.fullmatch(value) is not None


def is_valid_uuid(value: str) -> bool:
    """Return True for the canonical 8-4-4-4-12 hyphenated hex form."""
    if not isinstance(value, str) or len(value) != 36:
        return False
    return _UUID_RE.fullmatch(value) is not None


def require_safe_storage_id(value: str, what: str = "identifier") -> str:
    if not is_safe_storage_id(value):
        raise InvalidIdentifierError(f"Invalid {what}: {value!r}")
    return value


def require_uuid(value: str, what: str = "identifier") -> str:
    if not is_valid_uuid(value):
        raise InvalidIdentifierError(f"Invalid {what}: {value!r}")
    return value
