"""Codex CLI chat history backend.

Reads rollout files from ``sessions/YYYY/MM/DD/rollout-<ts>-<uuid>.jsonl``
under the Codex home directory (``~/.codex`` by default).

Two record generations are understood:
- Current: every line is ``{"timestamp", "type", "payload"}`` where type is
  ``session_meta``, ``turn_context``, ``response_item`` or ``event_msg``.
- Legacy: the first line is a bare ``{"id", "timestamp", "instructions"}``
  header and the remaining lines are bare response items.

Codex has no project concept of its own, so sessions are grouped by the
working directory recorded in ``session_meta``. The project id is a short
SHA-1 key of that directory.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from ..core import (
    Message,
    Project,
    Session,
    TokenUsage,
    summarize_messages,
    text_block,
    thinking_block,
    tool_result_block,
    tool_use_block,
)
from ..errors import ProviderNotFoundError
from ..provider import ChatProvider
from ..search import message_matches
from ..utils import (
    as_dict,
    first_int,
    first_str,
    mtime_to_rfc3339,
    normalize_timestamp,
    parse_json,
    recency_key,
    truncate,
)
from ..validation import is_safe_storage_id, is_valid_uuid
from .. import vpath

logger = logging.getLogger(__name__)

WRAPPED_TYPES = ("session_meta", "turn_context", "response_item", "event_msg", "compacted")
RESPONSE_ITEM_TYPES = (
    "message",
    "reasoning",
    "function_call",
    "function_call_output",
    "custom_tool_call",
    "custom_tool_call_output",
    "local_shell_call",
)

CODEX_TOOL_NAMES = {
    "shell": "Bash",
    "shell_command": "Bash",
    "exec_command": "Bash",
    "local_shell": "Bash",
    "apply_patch": "MultiEdit",
    "update_plan": "TodoWrite",
    "view_image": "Read",
    "web_search": "WebSearch",
}

# Injected harness context that Codex records as user messages.
_CONTEXT_PREFIXES = ("<environment_context>", "<user_instructions>", "# AGENTS.md instructions")
_CWD_RE = re.compile(r"<cwd>(.*?)</cwd>", re.S)
_UUID_TAIL_RE = re.compile(r"([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})$")

META_SCAN_LINES = 20


def project_key(cwd: str) -> str:
    """Stable, path-safe project id for a working directory."""
    return hashlib.sha1(cwd.encode("utf-8")).hexdigest()[:16]


def normalize_tool_name(name: str) -> str:
    return CODEX_TOOL_NAMES.get(name, name)


@dataclass
class RolloutMeta:
    session_id: str
    cwd: str = ""
    timestamp: str = ""


class _RolloutDecoder:
    """Stateful line decoder for one rollout file."""

    def __init__(self, session_ref: str, session_id: str):
        self.session_ref = session_ref
        self.session_id = session_id
        self.model: str | None = None
        self.cwd = ""
        self.messages: list[Message] = []
        self._last_assistant: Message | None = None

    def feed(self, obj: dict, line_num: int) -> None:
        kind = obj.get("type")
        payload = obj.get("payload")
        timestamp = normalize_timestamp(obj.get("timestamp")) or ""

        if kind in WRAPPED_TYPES and isinstance(payload, dict):
            if kind == "session_meta":
                self.cwd = first_str(payload, "cwd") or self.cwd
            elif kind == "turn_context":
                self.model = first_str(payload, "model") or self.model
                self.cwd = self.cwd or first_str(payload, "cwd") or ""
            elif kind == "response_item":
                self._response_item(payload, timestamp, line_num)
            elif kind == "event_msg":
                self._event(payload)
        elif kind in RESPONSE_ITEM_TYPES:
            self._response_item(obj, timestamp, line_num)

    def _emit(self, role: str, blocks: list[dict], timestamp: str, line_num: int) -> None:
        if not blocks:
            return
        msg = Message(
            uuid=f"codex-{self.session_id}-{line_num}",
            session_id=self.session_ref,
            timestamp=timestamp,
            role=role,
            content=blocks,
            provider="codex",
            model=self.model if role == "assistant" else None,
        )
        self.messages.append(msg)
        if role == "assistant":
            self._last_assistant = msg

    def _response_item(self, item: dict, timestamp: str, line_num: int) -> None:
        item_type = item.get("type")
        if item_type == "message":
            role, blocks = self._message_blocks(item)
            self._emit(role, blocks, timestamp, line_num)
        elif item_type == "reasoning":
            parts = [
                part for field in ("summary", "content")
                if isinstance(item.get(field), list) for part in item[field]
            ]
            texts = [
                part["text"] for part in parts
                if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip()
            ]
            if texts:
                self._emit("assistant", [thinking_block("\n\n".join(texts))], timestamp, line_num)
        elif item_type in ("function_call", "custom_tool_call", "local_shell_call"):
            self._emit("assistant", [self._tool_use(item)], timestamp, line_num)
        elif item_type in ("function_call_output", "custom_tool_call_output"):
            self._emit("user", [self._tool_result(item)], timestamp, line_num)

    def _message_blocks(self, item: dict) -> tuple[str, list[dict]]:
        role = item.get("role")
        if role in ("developer", "system"):
            role = "system"
        elif role != "assistant":
            role = "user"

        texts = []
        content = item.get("content")
        if isinstance(content, str):
            texts.append(content)
        elif isinstance(content, list):
            for part in content:
                text = first_str(part, "text")
                if text and text.strip():
                    texts.append(text)

        if role == "user" and texts and texts[0].lstrip().startswith(_CONTEXT_PREFIXES):
            role = "system"
            match = _CWD_RE.search(texts[0])
            if match and not self.cwd:
                self.cwd = match.group(1).strip()

        return role, [text_block(t) for t in texts]

    def _tool_use(self, item: dict) -> dict:
        call_id = first_str(item, "call_id", "id") or ""
        item_type = item.get("type")
        if item_type == "local_shell_call":
            command = as_dict(item.get("action")).get("command")
            if isinstance(command, list):
                command = " ".join(str(c) for c in command)
            return tool_use_block(call_id, "Bash", {"command": command or ""})

        name = first_str(item, "name") or "unknown"
        raw = item.get("arguments") if item_type == "function_call" else item.get("input")
        tool_input = parse_json(raw) if isinstance(raw, str) else raw
        if not isinstance(tool_input, dict):
            tool_input = {"input": raw} if raw else {}
        return tool_use_block(call_id, normalize_tool_name(name), tool_input)

    def _tool_result(self, item: dict) -> dict:
        call_id = first_str(item, "call_id") or ""
        output = item.get("output")
        is_error = False

        parsed = parse_json(output) if isinstance(output, str) else output
        if isinstance(parsed, dict) and ("output" in parsed or "metadata" in parsed):
            exit_code = as_dict(parsed.get("metadata")).get("exit_code")
            is_error = isinstance(exit_code, int) and not isinstance(exit_code, bool) and exit_code != 0
            output = parsed.get("output", "")
        return tool_result_block(call_id, output if output is not None else "", is_error=is_error)

    def _event(self, payload: dict) -> None:
        if payload.get("type") != "token_count":
            return
        last = as_dict(as_dict(payload.get("info")).get("last_token_usage"))
        input_tokens = first_int(last, "input_tokens")
        output_tokens = first_int(last, "output_tokens")
        if input_tokens is None and output_tokens is None:
            return
        if self._last_assistant is not None and self._last_assistant.usage is None:
            self._last_assistant.usage = TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cache_read_input_tokens=first_int(last, "cached_input_tokens"),
            )


class CodexProvider(ChatProvider):
    """Provider for Codex CLI chat history."""

    name = "codex"
    display_name = "Codex CLI"

    def sessions_root(self) -> Path:
        return self.require_base_path() / "sessions"

    def is_available(self) -> bool:
        base = self.get_base_path()
        return base is not None and (base / "sessions").is_dir()

    def scan_projects(self) -> list[Project]:
        groups: dict[str, dict[str, Any]] = {}
        for rollout in self._iter_rollouts():
            meta = self._read_meta(rollout)
            if meta is None:
                continue
            key = project_key(meta.cwd)
            group = groups.setdefault(key, {"cwd": meta.cwd, "count": 0, "latest": ""})
            group["count"] += 1
            modified = mtime_to_rfc3339(rollout)
            if recency_key(modified) > recency_key(group["latest"]):
                group["latest"] = modified

        projects = [
            Project(
                name=Path(group["cwd"]).name or group["cwd"] or "unknown",
                path=vpath.encode(self.name, key),
                actual_path=group["cwd"],
                session_count=group["count"],
                last_modified=group["latest"],
                provider=self.name,
            )
            for key, group in groups.items()
        ]
        projects.sort(key=lambda p: recency_key(p.last_modified), reverse=True)
        return projects

    def load_sessions(self, project_path: str, exclude_sidechain: bool = False) -> list[Session]:
        key = vpath.decode_single(self.name, project_path, is_safe_storage_id)

        sessions = []
        for rollout in self._iter_rollouts():
            meta = self._read_meta(rollout)
            if meta is None or project_key(meta.cwd) != key:
                continue

            session_ref = vpath.encode(self.name, key, meta.session_id)
            messages = self._parse_rollout(rollout, session_ref, meta.session_id)
            if not messages:
                continue

            stats = summarize_messages(messages)
            summary = next(
                (b["text"] for m in messages if m.role == "user"
                 for b in m.content or [] if b.get("type") == "text"),
                None,
            )
            sessions.append(Session(
                session_id=session_ref,
                actual_session_id=meta.session_id,
                file_path=session_ref,
                project_name=Path(meta.cwd).name,
                last_modified=stats["last_message_time"] or meta.timestamp,
                summary=truncate(summary.strip().splitlines()[0], 80) if summary else None,
                provider=self.name,
                **stats,
            ))

        sessions.sort(key=lambda s: recency_key(s.last_modified), reverse=True)
        return sessions

    def load_messages(self, session_path: str) -> list[Message]:
        key, session_id = vpath.decode_pair(self.name, session_path, is_safe_storage_id, is_valid_uuid)

        for rollout in self._iter_rollouts():
            if not rollout.stem.endswith(session_id):
                continue
            meta = self._read_meta(rollout)
            if meta is None or project_key(meta.cwd) != key:
                continue
            return self._parse_rollout(rollout, vpath.encode(self.name, key, session_id), session_id)

        raise ProviderNotFoundError(f"Session not found: {session_id}")

    def search(self, query: str, limit: int) -> list[Message]:
        self.require_base_path()
        if not query or limit <= 0:
            return []

        results = []
        for rollout in self._iter_rollouts():
            meta = self._read_meta(rollout)
            if meta is None:
                continue
            session_ref = vpath.encode(self.name, project_key(meta.cwd), meta.session_id)
            for msg in self._parse_rollout(rollout, session_ref, meta.session_id):
                if message_matches(msg, query):
                    results.append(msg)
                    if len(results) >= limit:
                        return results
        return results

    # ── Private helpers ──────────────────────────────────────────────

    def _iter_rollouts(self) -> Iterator[Path]:
        root = self.sessions_root()
        if not root.is_dir():
            return
        for path in sorted(root.rglob("rollout-*.jsonl")):
            if path.is_symlink() or not path.is_file():
                continue
            yield path

    def _iter_records(self, path: Path, max_lines: int | None = None) -> Iterator[tuple[int, dict]]:
        try:
            with path.open(encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    if max_lines is not None and line_num > max_lines:
                        return
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        obj = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.debug("Bad JSON at %s:%d: %s", path, line_num, e)
                        continue
                    if isinstance(obj, dict):
                        yield line_num, obj
        except OSError as e:
            logger.warning("Failed to read rollout %s: %s", path, e)

    def _read_meta(self, path: Path) -> RolloutMeta | None:
        """Read the session id and working directory from a rollout's head."""
        session_id = None
        timestamp = ""
        decoder = _RolloutDecoder("", "")

        for line_num, obj in self._iter_records(path, META_SCAN_LINES):
            payload = obj.get("payload")
            if obj.get("type") == "session_meta" and isinstance(payload, dict):
                session_id = first_str(payload, "id") or session_id
                timestamp = normalize_timestamp(payload.get("timestamp")) or timestamp
            elif line_num == 1 and "type" not in obj:
                # Legacy header line
                session_id = first_str(obj, "id") or session_id
                timestamp = normalize_timestamp(obj.get("timestamp")) or timestamp
            decoder.feed(obj, line_num)
            if session_id and decoder.cwd:
                break

        if not session_id or not is_valid_uuid(session_id):
            match = _UUID_TAIL_RE.search(path.stem)
            session_id = match.group(1) if match else None
        if not session_id:
            logger.debug("Skipping rollout without a session id: %s", path)
            return None
        return RolloutMeta(session_id=session_id, cwd=decoder.cwd, timestamp=timestamp)

    def _parse_rollout(self, path: Path, session_ref: str, session_id: str) -> list[Message]:
        decoder = _RolloutDecoder(session_ref, session_id)
        for line_num, obj in self._iter_records(path):
            decoder.feed(obj, line_num)
        return decoder.messages
