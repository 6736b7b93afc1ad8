"""Typer-based CLI for CodeGraph Search.

Every command builds an in-process index from PATH, then queries it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import toml
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__, config_manager
from .config import Settings, load_settings
from .errors import CodeSearchError, format_error
from .models import BuildReport, SearchContext
from .search import CodeSearchService

console = Console()

app = typer.Typer(
    help="🔎 CodeGraph Search: hybrid code retrieval with graph-aware ranking.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_RISK_STYLE = {"high": "bold red", "medium": "yellow", "low": "green"}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"CodeGraph Search v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log build and search details."),
):
    """CodeGraph Search: index a project, then search it or analyse change impact."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _settings(backend: Optional[str]) -> Settings:
    settings = load_settings()
    if backend:
        settings.search.backend = backend
    return settings


def _build(project_path: Path, backend: Optional[str]) -> Tuple[CodeSearchService, BuildReport]:
    try:
        service = CodeSearchService(_settings(backend))
        report = asyncio.run(service.index_path(project_path.resolve()))
    except (CodeSearchError, ValueError, ImportError) as exc:
        console.print(f"[red]{format_error(exc)}[/red]")
        raise typer.Exit(code=1)
    return service, report


_PATH_ARG = typer.Argument(..., exists=True, file_okay=False, help="Path to source project.")
_BACKEND_OPT = typer.Option(None, "--backend", "-b", help="Search backend: memory or lancedb.")


@app.command("index")
def index_project(
    project_path: Path = _PATH_ARG,
    backend: Optional[str] = _BACKEND_OPT,
):
    """Parse and index a project; print a build report."""
    service, report = _build(project_path, backend)
    graph = service.graph

    table = Table(title=f"Index of {project_path}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files indexed", str(report.files_processed))
    table.add_row("Files without extractor", str(len(report.files_skipped)))
    table.add_row("Files failed", str(len(report.files_failed)))
    table.add_row("Nodes", str(graph.metrics.node_count))
    table.add_row("Edges", str(graph.metrics.edge_count))
    table.add_row("Dropped relations", str(len(report.dropped_relations)))
    console.print(table)
    for path in report.files_failed:
        console.print(f"[yellow]failed:[/yellow] {path}")


@app.command("search")
def search(
    project_path: Path = _PATH_ARG,
    query: str = typer.Argument(..., help="Natural-language or identifier query."),
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Maximum results."),
    current_file: Optional[str] = typer.Option(None, "--file", "-f", help="File you are working in."),
    recent: List[str] = typer.Option([], "--recent", "-r", help="Recently viewed node or symbol (repeatable)."),
    task: Optional[str] = typer.Option(None, "--task", help="Task context, e.g. debugging."),
    backend: Optional[str] = _BACKEND_OPT,
):
    """Hybrid search re-ranked with graph signals."""
    service, _report = _build(project_path, backend)
    context = SearchContext(current_file=current_file, recently_viewed=list(recent), task_context=task)
    try:
        results = asyncio.run(service.search(query, context=context, limit=limit))
    except CodeSearchError as exc:
        console.print(f"[red]{format_error(exc)}[/red]")
        raise typer.Exit(code=1)

    if not results:
        console.print("[yellow]No results.[/yellow]")
        return

    table = Table(title=f"Results for '{query}' ({results[0].intent})", show_lines=False)
    table.add_column("#", style="dim", width=3)
    table.add_column("Score", justify="right", style="green")
    table.add_column("Symbol", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Location")
    table.add_column("Via", style="dim")
    for i, result in enumerate(results, 1):
        meta = result.hit.metadata
        location = meta.get("file_path", "")
        if meta.get("start_line"):
            location = f"{location}:{meta['start_line']}"
        table.add_row(
            str(i),
            f"{result.final_score:.3f}",
            str(meta.get("qualname") or result.id),
            str(meta.get("node_type", "")),
            location,
            result.search_type,
        )
    console.print(table)
    if results[0].degraded:
        console.print(
            "[yellow]Degraded search: "
            f"{', '.join(results[0].hit.explanation.degraded_channels)} unavailable.[/yellow]"
        )
    for action in dict.fromkeys(a for r in results for a in r.suggested_actions):
        console.print(f"[dim]• {action}[/dim]")


@app.command("impact")
def impact(
    project_path: Path = _PATH_ARG,
    symbol: str = typer.Argument(..., help="Node id, qualified name, or name."),
    depth: int = typer.Option(3, "--depth", "-d", min=1, help="Maximum dependent distance."),
    backend: Optional[str] = _BACKEND_OPT,
):
    """Show the nodes affected by changing SYMBOL and the resulting risk."""
    service, _report = _build(project_path, backend)
    try:
        report = service.analyze_impact(symbol, depth)
    except CodeSearchError as exc:
        console.print(f"[red]{format_error(exc)}[/red]")
        raise typer.Exit(code=1)

    graph = service.graph
    root = graph.nodes[report.node_id]
    high = set(report.high_centrality)
    table = Table(title=f"Impact of {root.display_name}")
    table.add_column("Kind", style="magenta")
    table.add_column("Symbol", style="cyan")
    table.add_column("File")
    table.add_column("Central", justify="center")
    for kind, ids in (("direct", report.direct), ("indirect", report.indirect)):
        for nid in ids:
            node = graph.nodes[nid]
            table.add_row(kind, node.display_name, node.file_path, "★" if nid in high else "")
    console.print(table)
    style = _RISK_STYLE.get(report.risk_level, "white")
    console.print(
        f"Risk: [{style}]{report.risk_level.upper()}[/{style}]  "
        f"({report.total_affected} affected, {report.high_centrality_count} high-centrality)"
    )


@app.command("stats")
def stats(
    project_path: Path = _PATH_ARG,
    backend: Optional[str] = _BACKEND_OPT,
):
    """Graph and index statistics."""
    service, _report = _build(project_path, backend)
    data = asyncio.run(service.stats())

    table = Table(title="Graph statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key in ("backend", "documents", "nodes", "edges", "avg_degree", "max_depth", "cycles", "clusters"):
        table.add_row(key.replace("_", " "), str(data[key]))
    for node_type, count in data["node_types"].items():
        table.add_row(f"  {node_type}", str(count))
    console.print(table)


def _parse_value(raw: str):
    try:
        return toml.loads(f"v = {raw}")["v"]
    except toml.TomlDecodeError:
        return raw


@app.command("config")
def config_cmd(
    key: Optional[str] = typer.Argument(None, help="Setting to change, as section.name (e.g. search.rrf_k)."),
    value: Optional[str] = typer.Argument(None, help="New value (TOML literal)."),
    reset: Optional[str] = typer.Option(None, "--reset", help="Reset one section to defaults."),
):
    """Show effective settings, or persist one setting to config.toml."""
    if reset:
        if reset not in config_manager.SECTIONS:
            raise typer.BadParameter(f"Unknown section '{reset}'. Available: {', '.join(config_manager.SECTIONS)}")
        config_manager.clear_section(reset)
        console.print(f"Reset [cyan]{escape(f'[{reset}]')}[/cyan] to defaults.")
        return

    if key is not None:
        if value is None or "." not in key:
            raise typer.BadParameter("Use: cg-search config SECTION.NAME VALUE")
        section, name = key.split(".", 1)
        known = load_settings().as_dict().get(section)
        if known is None or name not in known:
            raise typer.BadParameter(f"Unknown setting '{key}'.")
        if not config_manager.save_section(section, {name: _parse_value(value)}):
            console.print("[red]Could not write the config file.[/red]")
            raise typer.Exit(code=1)
        console.print(f"Set [cyan]{key}[/cyan] = {value}")
        return

    settings = load_settings().as_dict()
    for section, values in settings.items():
        table = Table(title=escape(f"[{section}]"), show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for name, val in values.items():
            table.add_row(name, str(val))
        console.print(table)


if __name__ == "__main__":
    app()
