"""Export chat sessions to Markdown and JSON formats."""

import json
from dataclasses import asdict
from datetime import timezone
from typing import Any

from .backends import PROVIDERS
from .core import Message, Session, summarize_messages
from .utils import parse_iso, truncate


def provider_display_name(provider: str) -> str:
    provider_class = PROVIDERS.get(provider)
    return provider_class.display_name if provider_class else provider


def format_date(value: str) -> str:
    dt = parse_iso(value)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M") if dt else ""


def format_time(value: str) -> str:
    dt = parse_iso(value)
    return dt.astimezone(timezone.utc).strftime("%H:%M:%S") if dt else ""


def format_duration(ms: float) -> str:
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {round(seconds % 60)}s"


def format_tokens(input_tokens: int = 0, output_tokens: int = 0, cache_read: int = 0) -> str:
    parts = []
    if input_tokens:
        parts.append(f"{input_tokens:,} in")
    if output_tokens:
        parts.append(f"{output_tokens:,} out")
    if cache_read:
        parts.append(f"{cache_read:,} cache read")
    return " · ".join(parts)


def tool_summary_line(block: dict[str, Any]) -> str:
    """One-line summary of a tool call, keyed on its most telling argument."""
    name = block.get("name", "unknown")
    tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}

    if name == "Skill":
        args = f" — `{tool_input['args']}`" if tool_input.get("args") else ""
        return f"> 🔧 **Skill:** `{tool_input.get('skill', '')}`{args}"

    key_arg = next(
        (tool_input[k] for k in ("file_path", "path", "command", "query") if tool_input.get(k)),
        "",
    )
    return f"> 🔧 **{name}**" + (f" `{key_arg}`" if key_arg else "")


def render_block(block: dict[str, Any]) -> str:
    block_type = block.get("type")
    if block_type == "text":
        return block.get("text", "")
    if block_type == "tool_use":
        return tool_summary_line(block)
    if block_type == "thinking":
        return f"<details>\n<summary>💭 Thinking</summary>\n\n{block.get('thinking', '')}\n\n</details>"
    if block_type == "tool_result":
        content = block.get("content")
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False) if content is not None else ""
        count = len(content.split("\n"))
        return f"[tool_result: {block.get('tool_use_id', '')} — {count} line{'s' if count != 1 else ''}]"
    return f"[{block_type}]"


def render_content(content: list[dict[str, Any]] | None) -> str:
    return "\n\n".join(filter(None, (render_block(b) for b in content or [])))


def _header(session: Session, visible: list[Message], project_path: str) -> list[str]:
    title = session.summary or session.actual_session_id
    lines = [
        f"# {title}",
        "",
        f"**Project:** `{project_path or session.project_name}`",
        f"**Provider:** {provider_display_name(session.provider)}",
    ]

    first_ts = visible[0].timestamp if visible else ""
    last_ts = visible[-1].timestamp if visible else ""
    if first_ts:
        lines.append(f"**Date:** {format_date(first_ts)}")
    start, end = parse_iso(first_ts), parse_iso(last_ts)
    if start and end:
        lines.append(f"**Duration:** {format_duration((end - start).total_seconds() * 1000)}")

    assistants = [m for m in visible if m.role == "assistant"]
    model = next((m.model for m in assistants if m.model), None)
    if model:
        lines.append(f"**Model:** {model}")

    total_in = sum(m.usage.input_tokens or 0 for m in assistants if m.usage)
    total_out = sum(m.usage.output_tokens or 0 for m in assistants if m.usage)
    total_cache = sum(m.usage.cache_read_input_tokens or 0 for m in assistants if m.usage)
    if total_in + total_out > 0:
        lines.append(f"**Tokens:** {format_tokens(total_in, total_out, total_cache)}")

    total_cost = sum(m.cost_usd or 0 for m in visible)
    if total_cost > 0:
        lines.append(f"**Cost:** ${total_cost:.4f}")

    lines.extend(["", "---", ""])
    return lines


def session_to_markdown(session: Session, messages: list[Message], project_path: str = "") -> str:
    """Export a session and its messages as clean Markdown.

    Sidechain (sub-agent) messages are left out.
    """
    visible = [m for m in messages if not m.is_sidechain]
    lines = _header(session, visible, project_path)

    if not visible:
        lines.append("_No messages_")
        return "\n".join(lines)

    for msg in visible:
        heading = f"## {msg.role.capitalize()}"
        time = format_time(msg.timestamp)
        if time:
            heading += f" · {time}"
        if msg.role == "assistant":
            usage = msg.usage
            meta = " · ".join(filter(None, [
                format_tokens(usage.input_tokens or 0, usage.output_tokens or 0,
                              usage.cache_read_input_tokens or 0) if usage else "",
                format_duration(msg.duration_ms) if msg.duration_ms else "",
            ]))
            if meta:
                heading += f" · {meta}"

        lines.extend([heading, "", render_content(msg.content), ""])
        if msg.role == "assistant" and msg.cost_usd:
            lines.extend([f"> 💰 ${msg.cost_usd:.4f}", ""])
        lines.extend(["---", ""])

    return "\n".join(lines)


def session_to_json(session: Session, messages: list[Message]) -> str:
    """Export a session and its messages as structured JSON."""
    data = {
        "session": asdict(session),
        "messages": [asdict(msg) for msg in messages],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def session_from_messages(provider: str, session_path: str, messages: list[Message]) -> Session:
    """Session metadata for an export, derived from its messages."""
    stats = summarize_messages(messages)
    first_text = next(
        (b["text"] for m in messages if m.role == "user"
         for b in m.content or [] if b.get("type") == "text"),
        None,
    )
    return Session(
        session_id=session_path,
        actual_session_id=session_path.rsplit("/", 1)[-1].split("://", 1)[-1],
        file_path=session_path,
        project_name="",
        last_modified=stats["last_message_time"],
        summary=truncate(first_text.strip().splitlines()[0], 80) if first_text and first_text.strip() else None,
        provider=provider,
        **stats,
    )
