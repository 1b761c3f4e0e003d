"""Provider registry."""

from ..config import HistoryConfig
from ..errors import UnknownProviderError
from ..provider import ChatProvider
from .claude_code import ClaudeCodeProvider
from .codex import CodexProvider
from .cursor import CursorProvider
from .opencode import OpenCodeProvider

PROVIDERS: dict[str, type[ChatProvider]] = {
    "claude": ClaudeCodeProvider,
    "codex": CodexProvider,
    "opencode": OpenCodeProvider,
    "cursor": CursorProvider,
}


def get_provider(name: str, config: HistoryConfig | None = None) -> ChatProvider:
    """Build the provider registered under ``name``."""
    try:
        provider_class = PROVIDERS[name]
    except KeyError:
        raise UnknownProviderError(name) from None
    return provider_class(config=config)

