"""Core data models for agent-history.

All entities are plain values built fresh for each request. Content blocks are
dicts in one of four shapes::

    {"type": "text", "text": ...}
    {"type": "thinking", "thinking": ...}
    {"type": "tool_use", "id": ..., "name": ..., "input": ...}
    {"type": "tool_result", "tool_use_id": ..., "content": ..., "is_error": ...}
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class TokenUsage:
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_creation_input_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None
    service_tier: Optional[str] = None


@dataclass
class Project:
    """A workspace that contains conversation sessions."""

    name: str
    path: str  # virtual path, e.g. "cursor://<workspace-hash>"
    actual_path: str  # real folder on disk, "" when unknown
    session_count: int
    provider: str
    message_count: int = 0
    last_modified: str = ""


@dataclass
class Session:
    """A single conversation thread within a project."""

    session_id: str  # virtual session reference
    actual_session_id: str  # provider-native id
    file_path: str  # virtual path accepted by load_messages
    project_name: str
    message_count: int
    provider: str
    first_message_time: str = ""
    last_message_time: str = ""
    last_modified: str = ""
    has_tool_use: bool = False
    has_errors: bool = False
    summary: Optional[str] = None


@dataclass
class Message:
    """One turn in a conversation."""

    uuid: str
    session_id: str
    timestamp: str
    role: str  # "user" | "assistant" | "system"
    content: Optional[list[dict[str, Any]]]
    provider: str
    parent_uuid: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    is_sidechain: bool = False

    def __post_init__(self):
        if not self.content:
            self.content = None

    @property
    def has_tool_use(self) -> bool:
        return any(b.get("type") == "tool_use" for b in self.content or [])

    @property
    def has_error(self) -> bool:
        return any(
            b.get("type") == "tool_result" and b.get("is_error")
            for b in self.content or []
        )


@dataclass
class ProviderInfo:
    id: str
    display_name: str
    base_path: str
    is_available: bool


@dataclass
class ProviderWarning:
    """A provider failure that was isolated from an aggregated call."""

    provider: str
    operation: str
    message: str


@dataclass
class AggregateResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    warnings: list[ProviderWarning] = field(default_factory=list)


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def thinking_block(text: str) -> dict[str, Any]:
    return {"type": "thinking", "thinking": text}


def tool_use_block(tool_id: str, name: str, tool_input: Any) -> dict[str, Any]:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}


def tool_result_block(tool_use_id: str, content: Any, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
        "is_error": is_error,
    }


def summarize_messages(messages: list[Message]) -> dict[str, Any]:
    """Derive session-level counters from decoded messages."""
    times = [m.timestamp for m in messages if m.timestamp]
    return {
        "message_count": len(messages),
        "first_message_time": times[0] if times else "",
        "last_message_time": times[-1] if times else "",
        "has_tool_use": any(m.has_tool_use for m in messages),
        "has_errors": any(m.has_error for m in messages),
    }
