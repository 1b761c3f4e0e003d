"""Cursor IDE chat history backend.

Cursor keeps its data under the editor's ``User`` directory:

- ``workspaceStorage/<hash>/workspace.json``: the project folder URI
- ``workspaceStorage/<hash>/state.vscdb``: ``ItemTable`` key
  ``composer.composerData`` lists the composer (conversation) ids
- ``globalStorage/state.vscdb``: ``cursorDiskKV`` holds each conversation as
  ``composerData:<composerId>`` and, for newer schema versions, each turn
  ("bubble") as ``bubbleId:<composerId>:<bubbleId>``

Composers below ``HEADERS_SCHEMA_VERSION`` store their bubbles inline under
``conversation``. From that version on the container only has
``fullConversationHeadersOnly`` and every bubble is fetched separately.
All database access is read-only.
"""

import logging
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core import (
    Message,
    Project,
    Session,
    TokenUsage,
    text_block,
    thinking_block,
    tool_result_block,
    tool_use_block,
)
from ..errors import DecodeError, ProviderNotFoundError, StoreError
from ..provider import ChatProvider
from ..search import message_matches
from ..store import KVStore
from ..utils import (
    as_dict,
    first_int,
    first_str,
    load_json_file,
    ms_to_rfc3339,
    normalize_timestamp,
    parse_json,
    recency_key,
)
from ..validation import is_safe_storage_id, is_valid_uuid, require_uuid
from .. import vpath

logger = logging.getLogger(__name__)

HEADERS_SCHEMA_VERSION = 6

USER_BUBBLE = 1
ASSISTANT_BUBBLE = 2

# Older global chat tabs tag bubbles with strings instead.
BUBBLE_ROLES = {
    USER_BUBBLE: "user",
    ASSISTANT_BUBBLE: "assistant",
    "user": "user",
    "ai": "assistant",
    "assistant": "assistant",
}

TERMINAL_TOOL_STATUSES = ("completed", "error")

# Cursor tool ids mapped onto the Claude Code tool vocabulary.
# Unlisted names pass through unchanged.
CURSOR_TOOL_NAMES = {
    "read_file": "Read",
    "read_file_v2": "Read",
    "edit_file": "Edit",
    "edit_file_v2": "Edit",
    "edit_file_v2_search_replace": "Edit",
    "search_replace": "Edit",
    "edit_files": "MultiEdit",
    "MultiEdit": "MultiEdit",
    "apply_patch": "MultiEdit",
    "write": "Write",
    "run_terminal_cmd": "Bash",
    "run_terminal_command_v2": "Bash",
    "list_dir": "Bash",
    "list_dir_v2": "Bash",
    "delete_file": "Bash",
    "codebase_search": "Grep",
    "grep_search": "Grep",
    "grep": "Grep",
    "rg": "Grep",
    "ripgrep": "Grep",
    "ripgrep_raw_search": "Grep",
    "file_search": "Glob",
    "glob_file_search": "Glob",
    "web_search": "WebSearch",
    "web_fetch": "WebFetch",
    "todo_write": "TodoWrite",
    "ask_question": "AskUserQuestion",
}


def normalize_tool_name(name: str) -> str:
    return CURSOR_TOOL_NAMES.get(name, name)


def uri_to_path(uri: str) -> str:
    """Strip a ``file://`` prefix and decode percent-escapes."""
    if uri.startswith("file://"):
        return urllib.parse.unquote(uri[len("file://"):])
    return uri


@dataclass
class WorkspaceInfo:
    """One ``workspaceStorage`` entry mapped to its project folder."""

    hash: str
    folder_path: str
    composer_ids: list[str] = field(default_factory=list)


@dataclass
class ComposerMeta:
    name: str | None
    created_at: int | None
    last_updated_at: int | None
    message_count: int
    has_tool_use: bool
    has_errors: bool
    status: str | None


def extract_composer_meta(container: dict) -> ComposerMeta:
    """Cheap summary of a ``composerData`` container without decoding bubbles."""
    conversation = container.get("conversation")
    headers = container.get("fullConversationHeadersOnly")
    if isinstance(conversation, list) and conversation:
        message_count = len(conversation)
    elif isinstance(headers, list):
        message_count = len(headers)
    else:
        message_count = 0

    bubbles = [b for b in conversation if isinstance(b, dict)] if isinstance(conversation, list) else []
    has_tool_use = any("toolFormerData" in b or "capabilityType" in b for b in bubbles)
    has_errors = any(as_dict(b.get("toolFormerData")).get("status") == "error" for b in bubbles)

    return ComposerMeta(
        name=first_str(container, "name"),
        created_at=_epoch_ms(container.get("createdAt")),
        last_updated_at=_epoch_ms(container.get("lastUpdatedAt")),
        message_count=message_count,
        has_tool_use=has_tool_use,
        has_errors=has_errors,
        status=first_str(container, "status"),
    )


def _epoch_ms(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


# ── Bubble decoding ──────────────────────────────────────────────


def _tool_blocks(tfd: dict) -> list[dict]:
    tool_call_id = first_str(tfd, "toolCallId")
    if not tool_call_id:
        return []

    raw_args = tfd.get("rawArgs")
    tool_input = parse_json(raw_args) if isinstance(raw_args, str) else None
    if not isinstance(tool_input, dict):
        tool_input = {}

    name = normalize_tool_name(first_str(tfd, "name") or "unknown")
    blocks = [tool_use_block(tool_call_id, name, tool_input)]

    status = tfd.get("status")
    if status in TERMINAL_TOOL_STATUSES:
        raw_result = tfd.get("params")
        if raw_result is None:
            raw_result = tfd.get("result")
        content = parse_json(raw_result) if isinstance(raw_result, str) else raw_result
        if content is None:
            content = raw_result if raw_result is not None else ""
        blocks.append(tool_result_block(tool_call_id, content, is_error=status == "error"))
    return blocks


def build_content(bubble: dict, is_assistant: bool) -> list[dict] | None:
    """Assemble content blocks in thinking, text, tool_use, tool_result order."""
    blocks = []

    if is_assistant:
        thinking = first_str(as_dict(bubble.get("thinking")), "text")
        if thinking:
            blocks.append(thinking_block(thinking))

    text = first_str(bubble, "text")
    if text:
        blocks.append(text_block(text))

    if is_assistant:
        tfd = bubble.get("toolFormerData")
        if isinstance(tfd, dict):
            blocks.extend(_tool_blocks(tfd))

    if not blocks:
        # Intermediate capability steps carry no visible content.
        if "capabilityType" in bubble:
            logger.debug("Dropping empty capability bubble %s", bubble.get("bubbleId"))
        return None
    return blocks


def _extract_usage(bubble: dict) -> TokenUsage | None:
    token_count = as_dict(bubble.get("tokenCount"))
    input_tokens = first_int(token_count, "inputTokens")
    output_tokens = first_int(token_count, "outputTokens")
    if input_tokens is None and output_tokens is None:
        return None
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)


def bubble_to_message(bubble: Any, session_ref: str, index: int) -> Message | None:
    """Convert one Cursor bubble to a Message; None when it has nothing to show."""
    if not isinstance(bubble, dict):
        return None
    bubble_type = bubble.get("type")
    if isinstance(bubble_type, bool) or not isinstance(bubble_type, (int, str)):
        return None
    role = BUBBLE_ROLES.get(bubble_type)
    if role is None:
        return None

    content = build_content(bubble, role == "assistant")
    if content is None:
        return None

    composer_id = vpath.strip_scheme("cursor", session_ref)
    bubble_id = first_str(bubble, "bubbleId") or f"cursor-{composer_id}-{index}"
    return Message(
        uuid=bubble_id,
        session_id=session_ref,
        timestamp=normalize_timestamp(bubble.get("createdAt")) or "",
        role=role,
        content=content,
        provider="cursor",
        model=first_str(as_dict(bubble.get("modelInfo")), "modelName"),
        usage=_extract_usage(bubble),
        duration_ms=first_int(bubble, "thinkingDurationMs"),
    )


def decode_composer(store: KVStore, composer_id: str, container: dict) -> list[Message]:
    """Decode a composer container into its ordered messages."""
    require_uuid(composer_id, "composer id")
    session_ref = vpath.encode("cursor", composer_id)
    version = container.get("_v")
    if not isinstance(version, int) or isinstance(version, bool):
        version = 0

    inline = container.get("conversation")
    headers = container.get("fullConversationHeadersOnly")
    use_headers = version >= HEADERS_SCHEMA_VERSION or (
        not inline and isinstance(headers, list) and bool(headers)
    )

    messages = []
    if not use_headers:
        for i, bubble in enumerate(inline if isinstance(inline, list) else []):
            msg = bubble_to_message(bubble, session_ref, i)
            if msg is not None:
                messages.append(msg)
        return messages

    for i, header in enumerate(headers if isinstance(headers, list) else []):
        bubble_id = first_str(as_dict(header), "bubbleId")
        if not bubble_id:
            continue
        raw = store.get_blob(f"bubbleId:{composer_id}:{bubble_id}")
        bubble = parse_json(raw)
        if bubble is None:
            logger.debug("Missing or corrupt bubble %s in composer %s", bubble_id, composer_id)
            continue
        msg = bubble_to_message(bubble, session_ref, i)
        if msg is not None:
            messages.append(msg)
    return messages


class CursorProvider(ChatProvider):
    """Provider for Cursor IDE chat history."""

    name = "cursor"
    display_name = "Cursor AI"

    def is_available(self) -> bool:
        base = self.get_base_path()
        return base is not None and self._global_db(base).is_file()

    def scan_projects(self) -> list[Project]:
        base = self.require_base_path()
        workspaces = self.discover_workspaces(base)
        if not workspaces:
            return []

        projects = []
        with KVStore(self._global_db(base)) as store:
            for ws in workspaces:
                total_messages = 0
                session_count = 0
                latest_updated = 0
                for cid in ws.composer_ids:
                    meta = self._read_composer_meta(store, cid)
                    if meta is None or meta.message_count == 0:
                        continue
                    session_count += 1
                    total_messages += meta.message_count
                    if meta.last_updated_at and meta.last_updated_at > latest_updated:
                        latest_updated = meta.last_updated_at

                if total_messages == 0:
                    continue

                projects.append(Project(
                    name=Path(ws.folder_path).name or ws.folder_path,
                    path=vpath.encode(self.name, ws.hash),
                    actual_path=ws.folder_path,
                    session_count=session_count,
                    message_count=total_messages,
                    last_modified=(ms_to_rfc3339(latest_updated) or "") if latest_updated else "",
                    provider=self.name,
                ))

        projects.sort(key=lambda p: recency_key(p.last_modified), reverse=True)
        return projects

    def load_sessions(self, project_path: str, exclude_sidechain: bool = False) -> list[Session]:
        ws_hash = vpath.decode_single(self.name, project_path, is_safe_storage_id)
        base = self.require_base_path()

        ws_dir = base / "workspaceStorage" / ws_hash
        ws_db = ws_dir / "state.vscdb"
        if not ws_db.is_file():
            raise ProviderNotFoundError(f"Workspace not found: {ws_hash}")

        with KVStore(ws_db) as ws_store:
            composer_ids = self._read_composer_ids(ws_store)

        folder = self._read_workspace_folder(ws_dir) or ""
        project_name = Path(folder).name if folder else ""

        sessions = []
        with KVStore(self._global_db(base)) as store:
            for cid in composer_ids:
                meta = self._read_composer_meta(store, cid)
                if meta is None or meta.message_count == 0:
                    continue

                first_time = ms_to_rfc3339(meta.created_at) if meta.created_at is not None else None
                last_time = ms_to_rfc3339(meta.last_updated_at) if meta.last_updated_at is not None else None
                summary = meta.name
                if not summary and meta.status and meta.status != "none":
                    summary = meta.status

                ref = vpath.encode(self.name, cid)
                sessions.append(Session(
                    session_id=ref,
                    actual_session_id=cid,
                    file_path=ref,
                    project_name=project_name,
                    message_count=meta.message_count,
                    first_message_time=first_time or "",
                    last_message_time=last_time or "",
                    last_modified=last_time or "",
                    has_tool_use=meta.has_tool_use,
                    has_errors=meta.has_errors,
                    summary=summary,
                    provider=self.name,
                ))

        sessions.sort(key=lambda s: recency_key(s.last_modified), reverse=True)
        return sessions

    def load_messages(self, session_path: str) -> list[Message]:
        composer_id = vpath.decode_single(self.name, session_path, is_valid_uuid)
        base = self.require_base_path()

        with KVStore(self._global_db(base)) as store:
            raw = store.get_blob(f"composerData:{composer_id}")
            if raw is None:
                raise ProviderNotFoundError(f"Composer not found: {composer_id}")
            container = parse_json(raw)
            if not isinstance(container, dict):
                raise DecodeError(f"Corrupt composer data: {composer_id}")
            return decode_composer(store, composer_id, container)

    def search(self, query: str, limit: int) -> list[Message]:
        base = self.require_base_path()
        if not query or limit <= 0:
            return []

        results = []
        with KVStore(self._global_db(base)) as store:
            rows = store.scan_blobs("bubbleId:", query, limit)

        for key, raw in rows:
            if len(results) >= limit:
                break
            bubble = parse_json(raw)
            if bubble is None:
                continue
            parts = key.split(":")
            composer_id = parts[1] if len(parts) >= 3 and is_valid_uuid(parts[1]) else ""
            session_ref = vpath.encode(self.name, composer_id) if composer_id else ""
            msg = bubble_to_message(bubble, session_ref, 0)
            if msg is not None and message_matches(msg, query):
                results.append(msg)
        return results

    # ── Workspace discovery ──────────────────────────────────────────

    def discover_workspaces(self, base: Path) -> list[WorkspaceInfo]:
        """Map ``workspaceStorage`` entries to folders and composer ids."""
        ws_root = base / "workspaceStorage"
        if not ws_root.is_dir():
            return []

        workspaces = []
        for entry in ws_root.iterdir():
            if entry.is_symlink() or not entry.is_dir():
                continue
            if not is_safe_storage_id(entry.name):
                continue

            folder = self._read_workspace_folder(entry)
            if not folder:
                continue

            db_path = entry / "state.vscdb"
            if not db_path.is_file():
                continue
            try:
                with KVStore(db_path) as ws_store:
                    composer_ids = self._read_composer_ids(ws_store)
            except (StoreError, DecodeError) as e:
                logger.debug("Skipping workspace %s: %s", entry.name, e)
                continue

            if composer_ids:
                workspaces.append(WorkspaceInfo(
                    hash=entry.name,
                    folder_path=folder,
                    composer_ids=composer_ids,
                ))
        return workspaces

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _global_db(base: Path) -> Path:
        return base / "globalStorage" / "state.vscdb"

    def _read_workspace_folder(self, ws_dir: Path) -> str | None:
        """Extract the project folder from workspace.json."""
        data = load_json_file(ws_dir / "workspace.json")
        folder_uri = first_str(data, "folder")
        if not folder_uri:
            return None
        return uri_to_path(folder_uri)

    def _read_composer_ids(self, ws_store: KVStore) -> list[str]:
        raw = ws_store.get_item("composer.composerData")
        if raw is None:
            return []
        data = parse_json(raw)
        if not isinstance(data, dict):
            raise DecodeError(f"Corrupt composer.composerData in {ws_store.path}")

        composer_ids = []
        for comp in data.get("allComposers") or []:
            cid = first_str(comp, "composerId")
            if cid and is_valid_uuid(cid):
                composer_ids.append(cid)
        return composer_ids

    def _read_composer_meta(self, store: KVStore, composer_id: str) -> ComposerMeta | None:
        container = parse_json(store.get_blob(f"composerData:{composer_id}"))
        if not isinstance(container, dict):
            return None
        return extract_composer_meta(container)
