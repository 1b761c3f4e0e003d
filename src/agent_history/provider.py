"""Abstract base class for chat history providers."""

from abc import ABC, abstractmethod
from pathlib import Path

from .config import HistoryConfig
from .core import Message, Project, ProviderInfo, Session
from .errors import ProviderNotFoundError


class ChatProvider(ABC):
    """Base class for AI assistant history backends.

    Each backend (Claude Code, Codex, OpenCode, Cursor) implements this
    interface to provide unified access to its conversation storage. A
    provider is given its base path explicitly, or resolves it from the
    ``HistoryConfig`` it was built with.
    """

    name: str  # "claude", "codex", "opencode", "cursor"
    display_name: str

    def __init__(self, base_path: Path | None = None, config: HistoryConfig | None = None):
        self._base_path = Path(base_path) if base_path is not None else None
        self.config = config or HistoryConfig()

    def get_base_path(self) -> Path | None:
        """Return the root directory where this tool stores its data."""
        if self._base_path is not None:
            return self._base_path
        return self.config.base_path(self.name)

    def require_base_path(self) -> Path:
        base = self.get_base_path()
        if base is None or not base.exists():
            raise ProviderNotFoundError(f"{self.display_name} not found")
        return base

    def detect(self) -> ProviderInfo:
        base = self.get_base_path()
        return ProviderInfo(
            id=self.name,
            display_name=self.display_name,
            base_path=str(base) if base else "",
            is_available=self.is_available(),
        )

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this tool's data exists on this machine."""
        ...

    @abstractmethod
    def scan_projects(self) -> list[Project]:
        """Return all projects with conversation history."""
        ...

    @abstractmethod
    def load_sessions(self, project_path: str, exclude_sidechain: bool = False) -> list[Session]:
        """Return the sessions of the project addressed by ``project_path``."""
        ...

    @abstractmethod
    def load_messages(self, session_path: str) -> list[Message]:
        """Return all messages for the session addressed by ``session_path``."""
        ...

    @abstractmethod
    def search(self, query: str, limit: int) -> list[Message]:
        """Return up to ``limit`` messages whose content contains ``query``."""
        ...
