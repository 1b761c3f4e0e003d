"""OpenCode chat history backend.

Reads chat data from the ``storage/`` directory under the OpenCode data
directory (``~/.local/share/opencode`` by default).
Data is organized as: project/ + session/ -> message/ -> part/ hierarchy.

Supports two storage versions:
- v1.0 (older): Messages contain only metadata; no part/ directories.
  Content is limited to summary.title on user messages.
- v1.1+ (newer): Full content stored in part/ directories as prt_*.json files.
"""

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
from ..validation import is_safe_storage_id, require_safe_storage_id
from .. import vpath

logger = logging.getLogger(__name__)

TERMINAL_TOOL_STATUSES = ("completed", "error")

OPENCODE_TOOL_NAMES = {
    "bash": "Bash",
    "read": "Read",
    "write": "Write",
    "edit": "Edit",
    "multiedit": "MultiEdit",
    "patch": "MultiEdit",
    "glob": "Glob",
    "grep": "Grep",
    "list": "LS",
    "todowrite": "TodoWrite",
    "todoread": "TodoRead",
    "webfetch": "WebFetch",
    "task": "Task",
}


def normalize_tool_name(name: str) -> str:
    return OPENCODE_TOOL_NAMES.get(name, name)


def _tool_blocks(part: dict) -> list[dict]:
    """Decode a tool part in the current ``state`` shape or the older flat one."""
    state = part.get("state")
    if isinstance(state, dict):
        # {"type":"tool", "tool":"grep", "callID":..., "state":{"status", "input", "output"}}
        name = first_str(part, "tool", "toolName", "name") or "unknown"
        tool_id = first_str(part, "callID", "toolCallId", "id") or ""
        tool_input = state.get("input")
        status = state.get("status")
        result = state.get("output") if status == "completed" else state.get("error")
    else:
        name = first_str(part, "toolName", "name", "tool") or "unknown"
        tool_id = first_str(part, "toolCallId", "id") or ""
        tool_input = part.get("input", part.get("args"))
        status = "completed" if state == "completed" or "result" in part else state
        result = part.get("result")

    blocks = [tool_use_block(
        tool_id,
        normalize_tool_name(name),
        tool_input if isinstance(tool_input, dict) else {},
    )]
    if status in TERMINAL_TOOL_STATUSES:
        blocks.append(tool_result_block(
            tool_id,
            result if result is not None else "",
            is_error=status == "error",
        ))
    return blocks


def process_parts(parts: list[dict]) -> tuple[list[dict], TokenUsage | None, float | None]:
    """Fold a message's parts into content blocks, usage and cost."""
    blocks: list[dict] = []
    usage = None
    cost = None

    for part in parts:
        part_type = part.get("type", "")
        if part_type == "text":
            text = first_str(part, "text", "content")
            if text and text.strip():
                blocks.append(text_block(text))
        elif part_type == "reasoning":
            text = first_str(part, "text", "reasoning")
            if text and text.strip():
                blocks.append(thinking_block(text))
        elif part_type == "tool":
            blocks.extend(_tool_blocks(part))
        elif part_type == "step-finish":
            usage = _tokens_to_usage(part.get("tokens")) or _tokens_to_usage(part.get("usage")) or usage
            step_cost = first_float(part, "cost", "costUSD")
            if step_cost is not None:
                cost = step_cost
        elif part_type == "compaction":
            text = first_str(part, "text") or "[Context compacted]"
            blocks.append(text_block(f"[Summary] {text}"))
        # file, snapshot, agent, subtask, retry, step-start, patch: skipped

    return blocks, usage, cost


def _tokens_to_usage(tokens: Any) -> TokenUsage | None:
    """Token counts as recorded by OpenCode (current and ai-sdk spellings)."""
    if not isinstance(tokens, dict):
        return None
    cache = as_dict(tokens.get("cache"))
    usage = TokenUsage(
        input_tokens=first_int(tokens, "input", "promptTokens", "input_tokens"),
        output_tokens=first_int(tokens, "output", "completionTokens", "output_tokens"),
        cache_creation_input_tokens=first_int(cache, "write"),
        cache_read_input_tokens=first_int(cache, "read"),
    )
    if usage.input_tokens is None and usage.output_tokens is None:
        return None
    return usage


class OpenCodeProvider(ChatProvider):
    """Provider for OpenCode chat history."""

    name = "opencode"
    display_name = "OpenCode"

    def storage_root(self) -> Path:
        return self.require_base_path() / "storage"

    def is_available(self) -> bool:
        base = self.get_base_path()
        return base is not None and (base / "storage" / "session").is_dir()

    def scan_projects(self) -> list[Project]:
        storage = self.storage_root()
        projects = []

        for project_dir in self._iter_project_dirs(storage):
            session_files = self._session_files(project_dir)
            if not session_files:
                continue

            meta = as_dict(load_json_file(storage / "project" / f"{project_dir.name}.json"))
            actual_path = (
                first_str(meta, "worktree", "path")
                or self._first_directory(session_files)
                or ""
            )
            name = first_str(meta, "name") or Path(actual_path).name or project_dir.name
            last_modified = max(
                (self._session_updated(f, as_dict(load_json_file(f))) for f in session_files),
                key=recency_key,
            )

            projects.append(Project(
                name=name,
                path=vpath.encode(self.name, project_dir.name),
                actual_path=actual_path,
                session_count=len(session_files),
                last_modified=last_modified,
                provider=self.name,
            ))

        projects.sort(key=lambda p: recency_key(p.last_modified), reverse=True)
        return projects

    def load_sessions(self, project_path: str, exclude_sidechain: bool = False) -> list[Session]:
        project_id = vpath.decode_single(self.name, project_path, is_safe_storage_id)
        storage = self.storage_root()
        project_dir = storage / "session" / project_id
        if not project_dir.is_dir():
            raise ProviderNotFoundError(f"Project not found: {project_id}")

        sessions = []
        for ses_file in self._session_files(project_dir):
            data = as_dict(load_json_file(ses_file))
            session_id = ses_file.stem
            session_ref = vpath.encode(self.name, project_id, session_id)
            messages = self._load_session_messages(storage, session_id, session_ref)
            if not messages:
                continue

            stats = summarize_messages(messages)
            title = first_str(data, "title")
            directory = first_str(data, "directory") or ""
            sessions.append(Session(
                session_id=session_ref,
                actual_session_id=first_str(data, "id") or session_id,
                file_path=session_ref,
                project_name=Path(directory).name,
                last_modified=self._session_updated(ses_file, data) or stats["last_message_time"],
                summary=truncate(title, 80) if title else None,
                provider=self.name,
                **stats,
            ))

        sessions.sort(key=lambda s: recency_key(s.last_modified), reverse=True)
        return sessions

    def load_messages(self, session_path: str) -> list[Message]:
        project_id, session_id = vpath.decode_pair(
            self.name, session_path, is_safe_storage_id, is_safe_storage_id
        )
        storage = self.storage_root()
        ses_file = storage / "session" / project_id / f"{session_id}.json"
        if not ses_file.is_file() and not (storage / "message" / session_id).is_dir():
            raise ProviderNotFoundError(f"Session not found: {session_id}")

        return self._load_session_messages(storage, session_id, vpath.encode(self.name, project_id, session_id))

    def search(self, query: str, limit: int) -> list[Message]:
        storage = self.storage_root()
        if not query or limit <= 0:
            return []

        results = []
        for project_dir in self._iter_project_dirs(storage):
            for ses_file in self._session_files(project_dir):
                session_ref = vpath.encode(self.name, project_dir.name, ses_file.stem)
                for msg in self._load_session_messages(storage, ses_file.stem, session_ref):
                    if message_matches(msg, query):
                        results.append(msg)
                        if len(results) >= limit:
                            return results
        return results

    # ── Private helpers ──────────────────────────────────────────────

    def _iter_project_dirs(self, storage: Path) -> Iterator[Path]:
        session_root = storage / "session"
        if not session_root.is_dir():
            return
        for entry in sorted(session_root.iterdir()):
            if entry.is_symlink() or not entry.is_dir():
                continue
            if not is_safe_storage_id(entry.name):
                logger.debug("Skipping project directory with unsafe name: %r", entry.name)
                continue
            yield entry

    def _session_files(self, project_dir: Path) -> list[Path]:
        return sorted(
            f for f in project_dir.glob("*.json")
            if not f.is_symlink() and is_safe_storage_id(f.stem)
        )

    def _first_directory(self, session_files: list[Path]) -> str | None:
        """Get the project folder from the first session that records one."""
        for ses_file in session_files:
            directory = first_str(load_json_file(ses_file), "directory")
            if directory:
                return directory
        return None

    @staticmethod
    def _session_updated(ses_file: Path, data: dict) -> str:
        time_data = as_dict(data.get("time"))
        return (
            normalize_timestamp(time_data.get("updated"))
            or normalize_timestamp(time_data.get("created"))
            or first_str(data, "updated_at", "created_at")
            or mtime_to_rfc3339(ses_file)
        )

    def _load_session_messages(self, storage: Path, session_id: str, session_ref: str) -> list[Message]:
        msg_dir = storage / "message" / require_safe_storage_id(session_id, "session id")
        if not msg_dir.is_dir():
            return []

        messages = []
        for msg_file in sorted(msg_dir.glob("*.json")):
            msg = self._parse_message_file(msg_file, storage, session_ref)
            if msg is not None:
                messages.append(msg)

        messages.sort(key=lambda m: recency_key(m.timestamp))
        return messages

    def _read_parts(self, part_dir: Path) -> list[dict]:
        parts = []
        for part_file in sorted(part_dir.glob("*.json")):
            part = load_json_file(part_file)
            if isinstance(part, dict):
                parts.append(part)
        return parts

    def _parse_message_file(self, msg_file: Path, storage: Path, session_ref: str) -> Message | None:
        """Parse a message JSON file and assemble its parts.

        Handles two storage versions:
        - v1.1+: Content in part/ directory (prt_*.json files)
        - v1.0: No parts; only summary.title available for user messages
        """
        data = load_json_file(msg_file)
        if not isinstance(data, dict):
            logger.debug("Skipping unreadable message file %s", msg_file)
            return None

        msg_id = first_str(data, "id") or msg_file.stem
        role = data.get("role")
        if role not in ("assistant", "system"):
            role = "user"

        part_dir = storage / "part" / msg_id
        parts = self._read_parts(part_dir) if is_safe_storage_id(msg_id) and part_dir.is_dir() else []
        blocks, usage, cost = process_parts(parts)

        # Fallback for v1.0: use summary.title if no parts found
        if not blocks and role == "user":
            title = first_str(as_dict(data.get("summary")), "title")
            if title:
                blocks = [text_block(title)]
        if not blocks:
            return None

        time_data = as_dict(data.get("time"))
        message_cost = first_float(data, "cost")
        return Message(
            uuid=msg_id,
            session_id=session_ref,
            timestamp=(
                normalize_timestamp(time_data.get("created"))
                or first_str(data, "created_at")
                or ""
            ),
            role=role,
            content=blocks,
            provider=self.name,
            model=first_str(data, "modelID", "model"),
            usage=_tokens_to_usage(data.get("tokens")) or usage,
            cost_usd=message_cost if message_cost is not None else cost,
        )
