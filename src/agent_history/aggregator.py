"""Fan-out over every provider with per-provider failure isolation.

Listing and search run each provider on a worker thread. A provider that
raises or runs past ``HistoryConfig.provider_timeout`` contributes nothing
and is reported as a ``ProviderWarning``; the call itself still succeeds.
A provider that is simply not installed contributes nothing silently.

Single-provider operations (``load_provider_sessions``,
``load_provider_messages``) propagate errors to the caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Iterable

from .backends import PROVIDERS, get_provider
from .config import HistoryConfig
from .core import AggregateResult, Message, Project, ProviderInfo, ProviderWarning, Session
from .errors import ProviderNotFoundError
from .provider import ChatProvider
from .search import rank_messages
from .utils import recency_key

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 100


def _select(providers: Iterable[str] | None, config: HistoryConfig) -> list[ChatProvider]:
    names = list(PROVIDERS) if providers is None else list(dict.fromkeys(providers))
    return [get_provider(name, config) for name in names]


def _warning(provider: str, operation: str, message: str) -> ProviderWarning:
    logger.warning("Provider %s failed during %s: %s", provider, operation, message)
    return ProviderWarning(provider=provider, operation=operation, message=message)


def _fan_out(
    providers: list[ChatProvider],
    operation: str,
    call: Callable[[ChatProvider], list[Any]],
    config: HistoryConfig,
) -> AggregateResult:
    """Run ``call`` for every provider concurrently and collect the partial results."""
    if not providers:
        return AggregateResult()

    partial: dict[str, list[Any]] = {}
    failures: dict[str, ProviderWarning] = {}

    executor = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="agent-history")
    futures = {executor.submit(call, p): p for p in providers}
    try:
        for future in as_completed(futures, timeout=config.provider_timeout):
            provider = futures[future]
            try:
                partial[provider.name] = future.result()
            except ProviderNotFoundError as e:
                logger.debug("Provider %s not available: %s", provider.name, e)
            except Exception as e:
                failures[provider.name] = _warning(provider.name, operation, str(e) or type(e).__name__)
    except FuturesTimeoutError:
        for future, provider in futures.items():
            if not future.done():
                failures[provider.name] = _warning(
                    provider.name, operation, f"timed out after {config.provider_timeout:g}s"
                )
    finally:
        # Stragglers keep running in the background; their results are discarded.
        executor.shutdown(wait=False, cancel_futures=True)

    result = AggregateResult()
    for provider in providers:
        result.items.extend(partial.get(provider.name, []))
        if provider.name in failures:
            result.warnings.append(failures[provider.name])
    return result


def detect_providers(config: HistoryConfig | None = None) -> list[ProviderInfo]:
    """Report every registered provider with its resolved path and availability."""
    config = config or HistoryConfig.from_env()
    infos = [get_provider(name, config).detect() for name in PROVIDERS]
    logger.info("Detected providers: %s", [i.id for i in infos if i.is_available])
    return infos


def scan_all_projects(
    config: HistoryConfig | None = None,
    providers: Iterable[str] | None = None,
) -> AggregateResult[Project]:
    """List projects from all selected providers, newest first."""
    config = config or HistoryConfig.from_env()
    result = _fan_out(_select(providers, config), "scan_projects", lambda p: p.scan_projects(), config)
    result.items.sort(key=lambda p: recency_key(p.last_modified), reverse=True)
    return result


def load_provider_sessions(
    provider: str,
    project_path: str,
    config: HistoryConfig | None = None,
    exclude_sidechain: bool = False,
) -> list[Session]:
    config = config or HistoryConfig.from_env()
    sessions = get_provider(provider, config).load_sessions(project_path, exclude_sidechain=exclude_sidechain)
    sessions.sort(key=lambda s: recency_key(s.last_modified), reverse=True)
    return sessions


def load_provider_messages(
    provider: str,
    session_path: str,
    config: HistoryConfig | None = None,
) -> list[Message]:
    config = config or HistoryConfig.from_env()
    return get_provider(provider, config).load_messages(session_path)


def search_all_providers(
    query: str,
    config: HistoryConfig | None = None,
    providers: Iterable[str] | None = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> AggregateResult[Message]:
    """Search every selected provider and merge the hits, newest first.

    Each provider is asked for up to ``limit`` hits; the merged list is cut
    to ``limit`` only afterwards so that no provider can crowd out the rest.
    """
    config = config or HistoryConfig.from_env()
    selected = _select(providers, config)
    if not query or limit <= 0:
        return AggregateResult()

    result = _fan_out(selected, "search", lambda p: p.search(query, limit), config)
    result.items = rank_messages(result.items, limit)
    return result
