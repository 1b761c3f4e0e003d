"""Claude Code chat history backend.

Reads chat data from the ``projects/`` directory under the Claude config
directory (``~/.claude`` by default). Each project directory holds one
``<session>.jsonl`` file per session and optionally a ``sessions-index.json``.

JSONL entry types:
- "user" or "human": User messages. Content can be a string or array of blocks,
  including tool_result blocks (responses from tool execution).
- "assistant": AI responses with text, thinking and tool_use blocks.
- "system": Harness notices; kept when they carry text.
- "summary": Session title, used for the session summary.
- "file-history-snapshot", "progress", "queue-operation": Skipped.

Content blocks are already in the canonical shape, so decoding mostly filters
empty and unknown blocks.
"""

import json
import logging
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
    first_float,
    first_int,
    first_str,
    load_json_file,
    mtime_to_rfc3339,
    normalize_timestamp,
    recency_key,
    truncate,
)
from ..validation import is_safe_storage_id
from .. import vpath

logger = logging.getLogger(__name__)

ROLE_BY_TYPE = {
    "user": "user",
    "human": "user",
    "assistant": "assistant",
    "system": "system",
}


def _normalize_blocks(raw: Any) -> list[dict]:
    """Keep the four canonical block types, dropping empty text and thinking."""
    if isinstance(raw, str):
        return [text_block(raw)] if raw.strip() else []
    if not isinstance(raw, list):
        return []

    blocks = []
    for block in raw:
        if isinstance(block, str):
            if block.strip():
                blocks.append(text_block(block))
            continue
        if not isinstance(block, dict):
            continue

        block_type = block.get("type", "")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                blocks.append(text_block(text))
        elif block_type == "thinking":
            text = block.get("thinking")
            if isinstance(text, str) and text.strip():
                blocks.append(thinking_block(text))
        elif block_type == "tool_use":
            tool_input = block.get("input")
            blocks.append(tool_use_block(
                block.get("id", ""),
                block.get("name", "unknown"),
                tool_input if isinstance(tool_input, dict) else {},
            ))
        elif block_type == "tool_result":
            blocks.append(tool_result_block(
                block.get("tool_use_id", ""),
                block.get("content", ""),
                is_error=bool(block.get("is_error", False)),
            ))
    return blocks


def _extract_usage(msg_data: dict) -> TokenUsage | None:
    usage = msg_data.get("usage")
    if not isinstance(usage, dict):
        return None
    token_usage = TokenUsage(
        input_tokens=first_int(usage, "input_tokens"),
        output_tokens=first_int(usage, "output_tokens"),
        cache_creation_input_tokens=first_int(usage, "cache_creation_input_tokens"),
        cache_read_input_tokens=first_int(usage, "cache_read_input_tokens"),
        service_tier=first_str(usage, "service_tier"),
    )
    if token_usage.input_tokens is None and token_usage.output_tokens is None:
        return None
    return token_usage


def entry_to_message(entry: dict, session_ref: str, index: int) -> Message | None:
    """Convert a JSONL entry to a Message, or None for non-message entries."""
    entry_type = entry.get("type")
    role = ROLE_BY_TYPE.get(entry_type) if isinstance(entry_type, str) else None
    if role is None:
        return None

    msg_data = as_dict(entry.get("message"))
    if role == "system" and not msg_data:
        raw_content = entry.get("content")
    else:
        raw_content = msg_data.get("content")

    blocks = _normalize_blocks(raw_content)
    if not blocks:
        return None

    uuid = first_str(entry, "uuid") or f"claude-{index}"
    return Message(
        uuid=uuid,
        parent_uuid=first_str(entry, "parentUuid"),
        session_id=session_ref,
        timestamp=normalize_timestamp(entry.get("timestamp")) or "",
        role=role,
        content=blocks,
        provider="claude",
        model=first_str(msg_data, "model"),
        usage=_extract_usage(msg_data),
        cost_usd=first_float(entry, "costUSD"),
        duration_ms=first_int(entry, "durationMs"),
        is_sidechain=bool(entry.get("isSidechain", False)),
    )


class ClaudeCodeProvider(ChatProvider):
    """Provider for Claude Code chat history."""

    name = "claude"
    display_name = "Claude Code"

    def projects_root(self) -> Path:
        return self.require_base_path() / "projects"

    def is_available(self) -> bool:
        base = self.get_base_path()
        return base is not None and (base / "projects").is_dir()

    def scan_projects(self) -> list[Project]:
        projects = []
        for project_dir in self._iter_project_dirs():
            session_files = self._session_files(project_dir)
            if not session_files:
                continue

            actual_path = self._resolve_project_path(project_dir, session_files)
            last_modified = max((mtime_to_rfc3339(f) for f in session_files), key=recency_key)
            projects.append(Project(
                name=Path(actual_path).name or project_dir.name,
                path=vpath.encode(self.name, project_dir.name),
                actual_path=actual_path,
                session_count=len(session_files),
                last_modified=last_modified,
                provider=self.name,
            ))

        projects.sort(key=lambda p: recency_key(p.last_modified), reverse=True)
        return projects

    def load_sessions(self, project_path: str, exclude_sidechain: bool = False) -> list[Session]:
        dir_name = vpath.decode_single(self.name, project_path, is_safe_storage_id)
        project_dir = self.projects_root() / dir_name
        if not project_dir.is_dir():
            raise ProviderNotFoundError(f"Project not found: {dir_name}")

        index = self._read_index(project_dir)
        project_name = Path(self._resolve_project_path(project_dir, [])).name or dir_name

        sessions = []
        for jsonl_file in self._session_files(project_dir):
            session_ref = vpath.encode(self.name, dir_name, jsonl_file.stem)
            messages, summary = self._parse_jsonl(jsonl_file, session_ref)
            if exclude_sidechain:
                messages = [m for m in messages if not m.is_sidechain]
            if not messages:
                continue

            stats = summarize_messages(messages)
            index_entry = index.get(jsonl_file.stem, {})
            if not summary:
                summary = first_str(index_entry, "summary", "firstPrompt")
            if not summary:
                summary = self._first_user_text(messages)

            sessions.append(Session(
                session_id=session_ref,
                actual_session_id=jsonl_file.stem,
                file_path=session_ref,
                project_name=project_name,
                last_modified=stats["last_message_time"] or mtime_to_rfc3339(jsonl_file),
                summary=truncate(summary, 80) if summary else None,
                provider=self.name,
                **stats,
            ))

        sessions.sort(key=lambda s: recency_key(s.last_modified), reverse=True)
        return sessions

    def load_messages(self, session_path: str) -> list[Message]:
        dir_name, session_name = vpath.decode_pair(
            self.name, session_path, is_safe_storage_id, is_safe_storage_id
        )
        jsonl_path = self.projects_root() / dir_name / f"{session_name}.jsonl"
        if not jsonl_path.is_file():
            raise ProviderNotFoundError(f"Session not found: {session_name}")

        messages, _ = self._parse_jsonl(jsonl_path, vpath.encode(self.name, dir_name, session_name))
        return messages

    def search(self, query: str, limit: int) -> list[Message]:
        self.require_base_path()
        if not query or limit <= 0:
            return []

        results = []
        for project_dir in self._iter_project_dirs():
            for jsonl_file in self._session_files(project_dir):
                session_ref = vpath.encode(self.name, project_dir.name, jsonl_file.stem)
                messages, _ = self._parse_jsonl(jsonl_file, session_ref)
                for msg in messages:
                    if message_matches(msg, query):
                        results.append(msg)
                        if len(results) >= limit:
                            return results
        return results

    # ── Private helpers ──────────────────────────────────────────────

    def _iter_project_dirs(self) -> Iterator[Path]:
        root = self.projects_root()
        if not root.is_dir():
            return
        for entry in root.iterdir():
            if entry.is_symlink() or not entry.is_dir():
                continue
            if not is_safe_storage_id(entry.name):
                logger.debug("Skipping project directory with unsafe name: %r", entry.name)
                continue
            yield entry

    def _session_files(self, project_dir: Path) -> list[Path]:
        return sorted(
            f for f in project_dir.glob("*.jsonl")
            if not f.is_symlink() and is_safe_storage_id(f.stem)
        )

    def _read_index(self, project_dir: Path) -> dict[str, dict]:
        """Read sessions-index.json keyed by session id.

        Both a bare list of entries and ``{"entries": [...]}`` are accepted.
        """
        data = load_json_file(project_dir / "sessions-index.json")
        if isinstance(data, dict):
            data = data.get("entries")
        if not isinstance(data, list):
            return {}
        index = {}
        for entry in data:
            session_id = first_str(entry, "sessionId")
            if session_id:
                index[session_id] = entry
        return index

    def _resolve_project_path(self, project_dir: Path, session_files: list[Path]) -> str:
        """Resolve the real project folder for a project directory.

        First checks sessions-index.json for projectPath, then the first
        ``cwd`` recorded in a session file, then derives it from the
        directory name.
        """
        for entry in self._read_index(project_dir).values():
            path = first_str(entry, "projectPath")
            if path:
                return path

        for jsonl_file in session_files or self._session_files(project_dir):
            cwd = self._first_cwd(jsonl_file)
            if cwd:
                return cwd

        # Derive from folder name: -Users-alice-dev-foo -> /Users/alice/dev/foo
        name = project_dir.name
        if name.startswith("-"):
            return name.replace("-", "/")
        return name

    def _first_cwd(self, jsonl_file: Path) -> str | None:
        try:
            with jsonl_file.open(encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    cwd = first_str(entry, "cwd")
                    if cwd:
                        return cwd
        except OSError:
            return None
        return None

    def _parse_jsonl(self, path: Path, session_ref: str) -> tuple[list[Message], str | None]:
        """Parse a session's JSONL file into messages and its summary title."""
        messages = []
        summary = None

        try:
            with path.open(encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.debug("Bad JSON at %s:%d: %s", path, line_num, e)
                        continue
                    if not isinstance(entry, dict):
                        continue

                    if entry.get("type") == "summary":
                        summary = first_str(entry, "summary") or summary
                        continue

                    msg = entry_to_message(entry, session_ref, line_num)
                    if msg is not None:
                        messages.append(msg)
        except OSError as e:
            logger.warning("Failed to read JSONL %s: %s", path, e)

        return messages, summary

    @staticmethod
    def _first_user_text(messages: list[Message]) -> str | None:
        for msg in messages:
            if msg.role != "user":
                continue
            for block in msg.content or []:
                if block.get("type") == "text":
                    return block["text"]
        return None
