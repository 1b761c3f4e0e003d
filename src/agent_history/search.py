"""Full-text matching and ranking shared by every provider's search."""

from typing import Any, Iterable

from .core import Message
from .utils import recency_key

BLOCK_TYPES = ("text", "thinking", "tool_use", "tool_result")

# Block fields that carry user-visible content. Structural fields (type,
# id, tool_use_id, is_error) are never matched.
SEARCHABLE_BLOCK_FIELDS = ("text", "thinking", "name", "input", "content")


def value_contains(value: Any, needle_lower: str) -> bool:
    """Case-insensitive substring search through nested JSON-like values.

    Only string leaves are matched and dict keys are ignored. Inside a
    content block only the content-bearing fields are searched, so a query
    like ``"text"`` does not hit every text block through its type tag.
    """
    if isinstance(value, str):
        return needle_lower in value.lower()
    if isinstance(value, dict):
        if value.get("type") in BLOCK_TYPES:
            fields = (value.get(k) for k in SEARCHABLE_BLOCK_FIELDS)
        else:
            fields = value.values()
        return any(value_contains(v, needle_lower) for v in fields)
    if isinstance(value, (list, tuple)):
        return any(value_contains(v, needle_lower) for v in value)
    return False


def message_matches(message: Message, query: str) -> bool:
    if not query or message.content is None:
        return False
    return value_contains(message.content, query.lower())


def escape_like(text: str, escape: str = "\\") -> str:
    """Escape a string so LIKE treats ``%`` and ``_`` literally."""
    return (
        text.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


def rank_messages(messages: Iterable[Message], limit: int | None = None) -> list[Message]:
    """Order messages newest first and optionally cut to ``limit``."""
    ranked = sorted(messages, key=lambda m: recency_key(m.timestamp), reverse=True)
    if limit is not None:
        ranked = ranked[: max(limit, 0)]
    return ranked
