"""Error types raised by providers and the aggregator.

Every error carries a human-readable message; callers at the HTTP and CLI
boundaries surface ``str(err)`` directly.
"""


class HistoryError(Exception):
    """Base class for all agent-history errors."""


class ProviderNotFoundError(HistoryError):
    """A provider is not installed, or a named resource does not exist."""


class InvalidIdentifierError(HistoryError):
    """An identifier failed validation before it reached the filesystem or a store."""


class DecodeError(HistoryError):
    """A stored record could not be decoded."""


class StoreError(HistoryError):
    """The embedded key-value store could not be opened or queried."""


class UnknownProviderError(HistoryError):
    """A provider tag does not match any registered provider."""

    def __init__(self, name: str):
        super().__init__(f"Unknown provider: {name}")
        self.name = name
