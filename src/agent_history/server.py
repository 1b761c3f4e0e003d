"""FastAPI web server for agent-history."""

import logging
import re
from dataclasses import asdict

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from . import __version__
from .aggregator import (
    DEFAULT_SEARCH_LIMIT,
    detect_providers,
    load_provider_messages,
    load_provider_sessions,
    scan_all_projects,
    search_all_providers,
)
from .config import HistoryConfig
from .errors import (
    DecodeError,
    HistoryError,
    InvalidIdentifierError,
    ProviderNotFoundError,
    StoreError,
    UnknownProviderError,
)
from .export import session_from_messages, session_to_json, session_to_markdown

logger = logging.getLogger(__name__)

app = FastAPI(title="agent-history", version=__version__)

# Config cache (populated on first request)
_config: HistoryConfig | None = None

ERROR_STATUS = {
    UnknownProviderError: 400,
    InvalidIdentifierError: 400,
    ProviderNotFoundError: 404,
    StoreError: 500,
    DecodeError: 500,
}


def _get_config() -> HistoryConfig:
    """Lazily capture the environment once and cache the config."""
    global _config
    if _config is None:
        _config = HistoryConfig.from_env()
    return _config


@app.exception_handler(HistoryError)
async def history_error_handler(request: Request, exc: HistoryError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/providers")
async def get_providers():
    """Return every registered provider and whether its data was found."""
    return [asdict(info) for info in detect_providers(_get_config())]


@app.get("/api/projects")
async def get_projects(
    provider: list[str] | None = Query(None, description="Restrict to these providers"),
):
    """Return projects across all providers, newest first."""
    result = scan_all_projects(_get_config(), providers=provider)
    return {
        "projects": [asdict(p) for p in result.items],
        "warnings": [asdict(w) for w in result.warnings],
    }


@app.get("/api/sessions")
async def get_sessions(
    provider: str = Query(..., description="Provider tag"),
    project: str = Query(..., description="Virtual project path"),
    exclude_sidechain: bool = Query(False),
):
    """Return the sessions of one project."""
    sessions = load_provider_sessions(provider, project, _get_config(), exclude_sidechain=exclude_sidechain)
    return {"sessions": [asdict(s) for s in sessions], "warnings": []}


@app.get("/api/messages")
async def get_messages(
    provider: str = Query(..., description="Provider tag"),
    session: str = Query(..., description="Virtual session path"),
):
    """Return full messages for a session."""
    messages = load_provider_messages(provider, session, _get_config())
    return {"session": session, "messages": [asdict(m) for m in messages]}


@app.get("/api/search")
async def search(
    q: str = Query(..., description="Text to search for"),
    provider: list[str] | None = Query(None, description="Restrict to these providers"),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, ge=1, le=1000),
):
    """Search message content across providers."""
    result = search_all_providers(q, _get_config(), providers=provider, limit=limit)
    return {
        "messages": [asdict(m) for m in result.items],
        "warnings": [asdict(w) for w in result.warnings],
    }


@app.get("/api/export")
async def export_session(
    provider: str = Query(..., description="Provider tag"),
    session: str = Query(..., description="Virtual session path"),
    format: str = Query("md", pattern="^(md|json)$", description="Export format: md or json"),
):
    """Export a session as Markdown or JSON."""
    messages = load_provider_messages(provider, session, _get_config())
    meta = session_from_messages(provider, session, messages)
    safe_title = re.sub(r"[^\w\- ]", "", meta.summary or meta.actual_session_id, flags=re.ASCII)[:50] or "session"

    if format == "json":
        return Response(
            content=session_to_json(meta, messages),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    return Response(
        content=session_to_markdown(meta, messages),
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
    )
