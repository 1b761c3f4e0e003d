"""Browse and search AI coding-assistant history from Claude Code, Codex, OpenCode and Cursor."""

__version__ = "0.1.0"
