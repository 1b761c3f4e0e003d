"""Small tolerant helpers shared by the provider backends."""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ms_to_rfc3339(ms: int) -> str | None:
    """Convert a (possibly negative) millisecond epoch to RFC 3339, or None."""
    try:
        dt = _EPOCH + timedelta(milliseconds=int(ms))
    except (OverflowError, ValueError, TypeError):
        return None
    return dt.isoformat(timespec="milliseconds")


def normalize_timestamp(value: Any) -> str | None:
    """Normalize an ISO-8601 string or millisecond epoch number.

    Strings pass through unchanged; integers (and integral floats) are
    treated as milliseconds since the epoch. Anything else yields None.
    """
    if isinstance(value, str):
        return value or None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return ms_to_rfc3339(value)
    if isinstance(value, float) and value.is_integer():
        return ms_to_rfc3339(int(value))
    return None


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 datetime string; naive values are taken as UTC."""
    if not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def recency_key(value: str | None) -> datetime:
    """Sort key for RFC 3339 strings; unparseable values sort as oldest."""
    return parse_iso(value) or _EPOCH


def mtime_to_rfc3339(path: Path) -> str:
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return ""
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(timespec="milliseconds")


def parse_json(text: str | None) -> Any:
    """Parse JSON text, returning None on any failure."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def load_json_file(path: Path) -> Any:
    """Read and parse a JSON file, returning None if unreadable or corrupt."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.debug("Skipping unreadable JSON file %s: %s", path, e)
        return None


def as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def first_str(obj: Any, *keys: str) -> str | None:
    """Return the first non-empty string found under ``keys``."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        val = obj.get(key)
        if isinstance(val, str) and val:
            return val
    return None


def first_int(obj: Any, *keys: str) -> int | None:
    """Return the first non-negative integer found under ``keys``."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        val = obj.get(key)
        if isinstance(val, int) and not isinstance(val, bool) and val >= 0:
            return val
    return None


def first_float(obj: Any, *keys: str) -> float | None:
    if not isinstance(obj, dict):
        return None
    for key in keys:
        val = obj.get(key)
        if isinstance(val, (int, float)) and not isinstance(val, bool):
            return float(val)
    return None


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
