"""Shared test fixtures for agent-history."""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from agent_history.config import HistoryConfig

COMPOSER_INLINE = "11111111-1111-4111-8111-111111111111"
COMPOSER_HEADERS = "22222222-2222-4222-8222-222222222222"
COMPOSER_MISSING = "33333333-3333-4333-8333-333333333333"

CODEX_SESSION = "0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b"
CODEX_LEGACY_SESSION = "5973b6c0-94b8-487b-a530-2aeb6098ae0e"
CODEX_CWD = "/Users/testuser/dev/codex-app"


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def _write_jsonl(path: Path, entries) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines), encoding="utf-8")


def make_vscdb(path: Path, items: dict | None = None, blobs: dict | None = None) -> Path:
    """Create a ``state.vscdb`` with the two tables Cursor uses."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in (items or {}).items():
        conn.execute("INSERT INTO ItemTable VALUES (?, ?)", (key, value if isinstance(value, str) else json.dumps(value)))
    for key, value in (blobs or {}).items():
        conn.execute("INSERT INTO cursorDiskKV VALUES (?, ?)", (key, value if isinstance(value, str) else json.dumps(value)))
    conn.commit()
    conn.close()
    return path


# ── Cursor ───────────────────────────────────────────────────────


def cursor_bubbles() -> list[dict]:
    """The same logical turns, used for both composer schema generations.

    Includes:
    - A user prompt
    - An assistant turn with thinking, text and a completed tool call
    - An empty capability bubble (should be dropped)
    - A bubble with an unknown type tag (should be dropped)
    - An assistant turn with an ISO timestamp
    """
    start = _ms(2025, 1, 15, 10, 0, 0)
    return [
        {"type": 1, "bubbleId": "b-001", "text": "Fix the login authentication bug in auth.ts", "createdAt": start},
        {
            "type": 2,
            "bubbleId": "b-002",
            "text": "Let me read the file first.",
            "thinking": {"text": "Need to inspect auth.ts"},
            "toolFormerData": {
                "toolCallId": "call-001",
                "name": "read_file",
                "rawArgs": json.dumps({"target_file": "auth.ts"}),
                "status": "completed",
                "result": json.dumps({"contents": "export function authenticate() {}"}),
            },
            "modelInfo": {"modelName": "claude-4-sonnet"},
            "tokenCount": {"inputTokens": 100, "outputTokens": 50},
            "createdAt": start + 5000,
        },
        {"type": 2, "bubbleId": "b-003", "capabilityType": 15, "text": ""},
        {"type": 3, "bubbleId": "b-004", "text": "internal marker"},
        {"type": 2, "bubbleId": "b-005", "text": "Fixed the token validation.", "createdAt": "2025-01-15T10:01:00.000Z"},
    ]


@pytest.fixture
def cursor_home(tmp_path):
    """Create a synthetic Cursor ``User`` directory.

    Workspaces:
    - abc123hash: two composers (inline and header-based), one invalid id
    - emptyhash: a composer whose data is missing (dropped from listings)
    - corrupthash: unreadable composer.composerData (skipped)
    """
    home = tmp_path / "cursor"
    ws_root = home / "workspaceStorage"
    created = _ms(2025, 1, 15, 10, 0, 0)

    _write_json(ws_root / "abc123hash" / "workspace.json", {"folder": "file:///Users/testuser/dev/my%20project"})
    make_vscdb(ws_root / "abc123hash" / "state.vscdb", items={
        "composer.composerData": {
            "allComposers": [
                {"composerId": COMPOSER_INLINE, "name": "Fix auth bug"},
                {"composerId": COMPOSER_HEADERS, "name": "Fix auth bug again"},
                {"composerId": "../../etc/passwd"},
            ],
        },
    })

    _write_json(ws_root / "emptyhash" / "workspace.json", {"folder": "file:///Users/testuser/dev/empty"})
    make_vscdb(ws_root / "emptyhash" / "state.vscdb", items={
        "composer.composerData": {"allComposers": [{"composerId": COMPOSER_MISSING}]},
    })

    _write_json(ws_root / "corrupthash" / "workspace.json", {"folder": "file:///Users/testuser/dev/corrupt"})
    make_vscdb(ws_root / "corrupthash" / "state.vscdb", items={"composer.composerData": "{not json"})

    bubbles = cursor_bubbles()
    blobs = {
        f"composerData:{COMPOSER_INLINE}": {
            "_v": 1,
            "composerId": COMPOSER_INLINE,
            "name": "Fix auth bug",
            "createdAt": created,
            "lastUpdatedAt": created + 60000,
            "conversation": bubbles,
        },
        f"composerData:{COMPOSER_HEADERS}": {
            "_v": 6,
            "composerId": COMPOSER_HEADERS,
            "name": "Fix auth bug again",
            "createdAt": created + 3600000,
            "lastUpdatedAt": created + 3660000,
            "fullConversationHeadersOnly": [{"bubbleId": b["bubbleId"], "type": b["type"]} for b in bubbles],
            "conversation": [],
        },
    }
    for bubble in bubbles:
        blobs[f"bubbleId:{COMPOSER_HEADERS}:{bubble['bubbleId']}"] = bubble
    make_vscdb(home / "globalStorage" / "state.vscdb", blobs=blobs)

    return home


# ── Claude Code ──────────────────────────────────────────────────


@pytest.fixture
def claude_home(tmp_path):
    """Create a synthetic Claude Code config directory with realistic JSONL.

    Includes:
    - User text messages
    - Assistant text + tool_use in same entry
    - User tool_result entries
    - Thinking blocks
    - A sidechain (sub-agent) message
    - file-history-snapshot, progress and queue-operation (should be skipped)
    """
    home = tmp_path / "claude"
    project_dir = home / "projects" / "-Users-testuser-dev-myapp"

    index = {
        "version": 1,
        "entries": [
            {
                "sessionId": "session-002",
                "firstPrompt": "Write tests for the API",
                "projectPath": "/Users/testuser/dev/myapp",
            },
        ],
    }
    _write_json(project_dir / "sessions-index.json", index)

    _write_jsonl(project_dir / "session-001.jsonl", [
        {
            "type": "user",
            "message": {"role": "user", "content": [{"type": "text", "text": "Help me refactor the auth module"}]},
            "timestamp": "2025-01-20T10:00:00Z",
            "uuid": "uuid-001",
            "cwd": "/Users/testuser/dev/myapp",
        },
        {
            "type": "assistant",
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4-20250514",
                "content": [
                    {"type": "text", "text": "I'll help you refactor the auth module. Let me start by reading the current code."},
                    {"type": "tool_use", "id": "toolu_001", "name": "Read", "input": {"file_path": "/src/auth.ts"}},
                ],
                "usage": {"input_tokens": 100, "output_tokens": 50, "cache_read_input_tokens": 20},
            },
            "timestamp": "2025-01-20T10:00:30Z",
            "uuid": "uuid-002",
            "parentUuid": "uuid-001",
            "costUSD": 0.01,
            "durationMs": 3200,
        },
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_001", "content": "export function authenticate(token: string) {\n  return jwt.verify(token);\n}", "is_error": False},
            ]},
            "timestamp": "2025-01-20T10:00:31Z",
            "uuid": "uuid-003",
        },
        {
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "thinking", "thinking": "I need to split this into separate functions for validation and token refresh."},
                {"type": "text", "text": "I can see the auth module. Let me refactor it into separate concerns."},
                {"type": "tool_use", "id": "toolu_002", "name": "Edit", "input": {"file_path": "/src/auth.ts"}},
            ]},
            "timestamp": "2025-01-20T10:01:00Z",
            "uuid": "uuid-004",
        },
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_002", "content": "Permission denied", "is_error": True},
            ]},
            "timestamp": "2025-01-20T10:01:01Z",
            "uuid": "uuid-005",
        },
        {"type": "file-history-snapshot", "files": [{"path": "/src/auth.ts"}]},
        {
            "type": "assistant",
            "isSidechain": True,
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Sub-agent exploring the repository"}]},
            "timestamp": "2025-01-20T10:02:00Z",
            "uuid": "uuid-006",
        },
        {"type": "progress", "data": {"type": "hook_progress"}},
        {"type": "summary", "summary": "Refactored auth module into separate files"},
        {"type": "queue-operation", "operation": "enqueue"},
        "{not valid json",
        {
            "type": "human",
            "message": {"role": "user", "content": "Looks good, now split it into separate files"},
            "timestamp": "2025-01-20T10:05:00Z",
            "uuid": "uuid-007",
        },
    ])

    _write_jsonl(project_dir / "session-002.jsonl", [
        {
            "type": "user",
            "message": {"role": "user", "content": "Write tests for the API"},
            "timestamp": "2025-01-21T09:00:00Z",
            "uuid": "uuid-101",
        },
        {
            "type": "assistant",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Here is a pytest suite."}]},
            "timestamp": "2025-01-21T09:00:20Z",
            "uuid": "uuid-102",
        },
    ])

    return home


# ── Codex ────────────────────────────────────────────────────────


@pytest.fixture
def codex_home(tmp_path):
    """Create a synthetic Codex home with a current and a legacy rollout."""
    home = tmp_path / "codex"

    def item(ts, payload):
        return {"timestamp": ts, "type": "response_item", "payload": payload}

    _write_jsonl(home / "sessions" / "2025" / "01" / "20" / f"rollout-2025-01-20T10-00-00-{CODEX_SESSION}.jsonl", [
        {
            "timestamp": "2025-01-20T10:00:00.000Z",
            "type": "session_meta",
            "payload": {"id": CODEX_SESSION, "timestamp": "2025-01-20T10:00:00.000Z", "cwd": CODEX_CWD, "cli_version": "0.46.0"},
        },
        item("2025-01-20T10:00:00.100Z", {
            "type": "message", "role": "user",
            "content": [{"type": "input_text", "text": f"<environment_context>\n  <cwd>{CODEX_CWD}</cwd>\n</environment_context>"}],
        }),
        {"timestamp": "2025-01-20T10:00:01.000Z", "type": "turn_context", "payload": {"cwd": CODEX_CWD, "model": "gpt-5-codex"}},
        item("2025-01-20T10:00:01.500Z", {
            "type": "message", "role": "user",
            "content": [{"type": "input_text", "text": "Add a health check endpoint"}],
        }),
        item("2025-01-20T10:00:05.000Z", {
            "type": "reasoning",
            "summary": [{"type": "summary_text", "text": "**Planning the endpoint**"}],
            "encrypted_content": "gAAAA",
        }),
        item("2025-01-20T10:00:06.000Z", {
            "type": "function_call", "name": "shell", "call_id": "call_1",
            "arguments": json.dumps({"command": ["bash", "-lc", "ls"]}),
        }),
        item("2025-01-20T10:00:07.000Z", {
            "type": "function_call_output", "call_id": "call_1",
            "output": json.dumps({"output": "app.py\n", "metadata": {"exit_code": 0, "duration_seconds": 0.1}}),
        }),
        item("2025-01-20T10:00:08.000Z", {
            "type": "function_call", "name": "shell", "call_id": "call_2",
            "arguments": json.dumps({"command": ["bash", "-lc", "pytest"]}),
        }),
        item("2025-01-20T10:00:09.000Z", {
            "type": "function_call_output", "call_id": "call_2",
            "output": json.dumps({"output": "1 failed", "metadata": {"exit_code": 1}}),
        }),
        item("2025-01-20T10:00:10.000Z", {
            "type": "message", "role": "assistant",
            "content": [{"type": "output_text", "text": "Added the /health endpoint."}],
        }),
        {
            "timestamp": "2025-01-20T10:00:10.500Z",
            "type": "event_msg",
            "payload": {"type": "token_count", "info": {"last_token_usage": {
                "input_tokens": 1200, "cached_input_tokens": 200, "output_tokens": 300,
            }}},
        },
        {"timestamp": "2025-01-20T10:00:11.000Z", "type": "event_msg", "payload": {"type": "agent_message", "message": "Added the /health endpoint."}},
        "{not valid json",
    ])

    _write_jsonl(home / "sessions" / "2024" / "12" / "01" / f"rollout-2024-12-01T09-00-00-{CODEX_LEGACY_SESSION}.jsonl", [
        {"id": CODEX_LEGACY_SESSION, "timestamp": "2024-12-01T09:00:00.000Z", "instructions": None},
        {"record_type": "state"},
        {"type": "message", "role": "user", "content": [
            {"type": "input_text", "text": "<environment_context>\n<cwd>/Users/testuser/dev/legacy</cwd>\n</environment_context>"},
        ]},
        {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "Explain the legacy parser"}]},
        {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "The legacy parser reads bare items."}]},
    ])

    return home


# ── OpenCode ─────────────────────────────────────────────────────


@pytest.fixture
def opencode_home(tmp_path):
    """Create a synthetic OpenCode v1.1+ data directory with parts."""
    home = tmp_path / "opencode"
    storage = home / "storage"

    _write_json(storage / "project" / "proj1.json", {
        "id": "proj1",
        "worktree": "/Users/testuser/dev/api-server",
        "vcs": "git",
    })
    _write_json(storage / "session" / "proj1" / "ses_001.json", {
        "id": "ses_001",
        "version": "1.1.34",
        "projectID": "proj1",
        "title": "Debug API endpoint",
        "directory": "/Users/testuser/dev/api-server",
        "time": {"created": _ms(2025, 1, 22, 8, 0, 0), "updated": _ms(2025, 1, 22, 8, 30, 0)},
    })

    msg_dir = storage / "message" / "ses_001"
    # File names deliberately out of time order
    _write_json(msg_dir / "msg_003.json", {
        "id": "msg_003", "sessionID": "ses_001", "role": "assistant",
        "time": {"created": _ms(2025, 1, 22, 8, 1, 0)},
    })
    _write_json(msg_dir / "msg_001.json", {
        "id": "msg_001", "sessionID": "ses_001", "role": "user",
        "time": {"created": _ms(2025, 1, 22, 8, 0, 0)},
        "summary": {"title": "API 500 error investigation", "diffs": []},
    })
    _write_json(msg_dir / "msg_002.json", {
        "id": "msg_002", "sessionID": "ses_001", "role": "assistant",
        "modelID": "claude-sonnet-4", "providerID": "anthropic",
        "time": {"created": _ms(2025, 1, 22, 8, 0, 30)},
        "tokens": {"input": 120, "output": 40, "reasoning": 0, "cache": {"read": 10, "write": 0}},
        "cost": 0.002,
    })
    _write_json(msg_dir / "msg_004.json", {
        "id": "msg_004", "sessionID": "ses_001", "role": "assistant",
        "time": {"created": _ms(2025, 1, 22, 8, 2, 0)},
    })
    _write_json(msg_dir / "msg_005.json", {
        "id": "msg_005", "sessionID": "ses_001", "role": "assistant",
        "time": {"created": _ms(2025, 1, 22, 8, 3, 0)},
    })

    part = storage / "part"
    _write_json(part / "msg_001" / "prt_001.json", {
        "id": "prt_001", "messageID": "msg_001", "type": "text",
        "text": "Why is the /api/users endpoint returning 500?",
    })
    _write_json(part / "msg_002" / "prt_001.json", {
        "id": "prt_002", "messageID": "msg_002", "type": "text",
        "text": "The error is in the database query. Let me check the logs.",
    })
    _write_json(part / "msg_003" / "prt_001.json", {"id": "prt_003a", "type": "step-start", "snapshot": "abc123"})
    _write_json(part / "msg_003" / "prt_002.json", {
        "id": "prt_003b", "type": "reasoning", "text": "Search for the users query.",
    })
    _write_json(part / "msg_003" / "prt_003.json", {
        "id": "prt_003c",
        "type": "tool",
        "tool": "grep",
        "callID": "call-grep",
        "state": {
            "status": "completed",
            "input": {"pattern": "SELECT.*FROM users", "include": "*.ts"},
            "output": "Found 3 matches\nsrc/db.ts:15: SELECT * FROM users WHERE id = $1",
            "metadata": {"matches": 3},
        },
    })
    _write_json(part / "msg_003" / "prt_004.json", {
        "id": "prt_003d", "type": "step-finish",
        "tokens": {"input": 50, "output": 20, "cache": {"read": 0, "write": 0}},
        "cost": 0.001,
    })
    _write_json(part / "msg_004" / "prt_001.json", {
        "id": "prt_004", "type": "compaction", "text": "Investigated the users endpoint",
    })
    _write_json(part / "msg_005" / "prt_001.json", {
        "id": "prt_005", "type": "tool",
        "toolName": "read", "toolCallId": "call-flat",
        "args": {"file_path": "/src/db.ts"},
        "state": "completed", "result": "const db = connect();",
    })

    return home


@pytest.fixture
def opencode_v1_home(tmp_path):
    """Create a synthetic OpenCode v1.0 data directory (no parts, summary only)."""
    home = tmp_path / "opencode_v1"
    storage = home / "storage"

    _write_json(storage / "session" / "proj_old" / "ses_old_001.json", {
        "id": "ses_old_001",
        "version": "1.0.218",
        "title": "Build login page",
        "directory": "/Users/testuser/dev/webapp",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 0), "updated": _ms(2025, 1, 10, 10, 0, 0)},
    })

    # Messages with summary but NO part directories
    msg_dir = storage / "message" / "ses_old_001"
    _write_json(msg_dir / "msg_old_001.json", {
        "id": "msg_old_001",
        "sessionID": "ses_old_001",
        "role": "user",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 0)},
        "summary": {"title": "Build a login page with email and password", "diffs": []},
        "model": {"providerID": "opencode", "modelID": "big-pickle"},
    })
    _write_json(msg_dir / "msg_old_002.json", {
        "id": "msg_old_002",
        "sessionID": "ses_old_001",
        "role": "assistant",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 30)},
        "mode": "code",
        "finish": "stop",
    })
    (storage / "part").mkdir(parents=True)

    return home


@pytest.fixture
def history_config(claude_home, codex_home, opencode_home, cursor_home):
    """A config whose base paths point at all four synthetic stores."""
    return HistoryConfig(base_paths={
        "claude": claude_home,
        "codex": codex_home,
        "opencode": opencode_home,
        "cursor": cursor_home,
    })
