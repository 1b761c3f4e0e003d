"""CLI entry point for agent-history."""

import json
import logging
from dataclasses import asdict
from pathlib import Path

import click
import uvicorn

from .aggregator import (
    DEFAULT_SEARCH_LIMIT,
    detect_providers,
    load_provider_messages,
    load_provider_sessions,
    scan_all_projects,
    search_all_providers,
)
from .backends import PROVIDERS
from .config import HistoryConfig
from .errors import HistoryError
from .export import session_from_messages, session_to_json, session_to_markdown

PROVIDER_CHOICE = click.Choice(list(PROVIDERS))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _echo_warnings(warnings) -> None:
    for w in warnings:
        click.echo(f"warning: {w.provider} {w.operation}: {w.message}", err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--base-path",
    "base_paths",
    multiple=True,
    metavar="PROVIDER=PATH",
    help="Override a provider's data directory (repeatable).",
)
@click.option("--timeout", type=float, default=None, help="Per-provider timeout in seconds.")
@click.pass_context
def main(ctx: click.Context, verbose: bool, base_paths: tuple[str, ...], timeout: float | None):
    """Browse AI coding chat history from Claude Code, Codex, OpenCode and Cursor."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    for item in base_paths:
        name, sep, path = item.partition("=")
        if not sep or name not in PROVIDERS:
            raise click.BadParameter(f"expected PROVIDER=PATH, got {item!r}", param_hint="--base-path")
        overrides[name] = Path(path).expanduser()

    kwargs = {"provider_timeout": timeout} if timeout is not None else {}
    ctx.obj = HistoryConfig.from_env(base_paths=overrides, **kwargs)


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.pass_obj
def serve(config: HistoryConfig, port: int, host: str):
    """Start the HTTP API."""
    from . import server

    server._config = config
    click.echo(f"Starting agent-history on http://{host}:{port}")
    uvicorn.run(server.app, host=host, port=port, reload=False)


@main.command()
@click.pass_obj
def providers(config: HistoryConfig):
    """List providers and whether their data was found."""
    _echo_json([asdict(info) for info in detect_providers(config)])


@main.command()
@click.option("--provider", "-p", "selected", multiple=True, type=PROVIDER_CHOICE,
              help="Restrict to this provider (repeatable).")
@click.pass_obj
def projects(config: HistoryConfig, selected: tuple[str, ...]):
    """List projects across providers, newest first."""
    result = scan_all_projects(config, providers=selected or None)
    _echo_warnings(result.warnings)
    _echo_json([asdict(p) for p in result.items])


@main.command()
@click.argument("provider", type=PROVIDER_CHOICE)
@click.argument("project_path")
@click.option("--exclude-sidechain", is_flag=True, help="Skip sub-agent messages.")
@click.pass_obj
def sessions(config: HistoryConfig, provider: str, project_path: str, exclude_sidechain: bool):
    """List the sessions of PROJECT_PATH."""
    try:
        found = load_provider_sessions(provider, project_path, config, exclude_sidechain=exclude_sidechain)
    except HistoryError as e:
        raise click.ClickException(str(e))
    _echo_json([asdict(s) for s in found])


@main.command()
@click.argument("provider", type=PROVIDER_CHOICE)
@click.argument("session_path")
@click.pass_obj
def messages(config: HistoryConfig, provider: str, session_path: str):
    """Print the messages of SESSION_PATH."""
    try:
        found = load_provider_messages(provider, session_path, config)
    except HistoryError as e:
        raise click.ClickException(str(e))
    _echo_json([asdict(m) for m in found])


@main.command()
@click.argument("query")
@click.option("--provider", "-p", "selected", multiple=True, type=PROVIDER_CHOICE,
              help="Restrict to this provider (repeatable).")
@click.option("--limit", "-n", default=DEFAULT_SEARCH_LIMIT, show_default=True, help="Maximum results.")
@click.pass_obj
def search(config: HistoryConfig, query: str, selected: tuple[str, ...], limit: int):
    """Search message content for QUERY."""
    result = search_all_providers(query, config, providers=selected or None, limit=limit)
    _echo_warnings(result.warnings)
    _echo_json([asdict(m) for m in result.items])


@main.command()
@click.argument("provider", type=PROVIDER_CHOICE)
@click.argument("session_path")
@click.option("--format", "fmt", type=click.Choice(["md", "json"]), default="md", show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write to a file instead of stdout.")
@click.pass_obj
def export(config: HistoryConfig, provider: str, session_path: str, fmt: str, output: Path | None):
    """Export SESSION_PATH as Markdown or JSON."""
    try:
        found = load_provider_messages(provider, session_path, config)
    except HistoryError as e:
        raise click.ClickException(str(e))

    meta = session_from_messages(provider, session_path, found)
    text = session_to_json(meta, found) if fmt == "json" else session_to_markdown(meta, found)
    if output is None:
        click.echo(text)
    else:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Wrote {output}")
