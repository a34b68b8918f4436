"""Typer-based CLI for the dependency coherence engine."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__, config
from .cache import TTLCache
from .config_manager import EngineSettings, load_settings, save_settings, write_tsconfig_alias
from .engine import CoherenceEngine
from .graph_export import export_dot, export_html
from .heal import AutoHealer, HealResult
from .models import CoherenceError, ConfigError, Focus, Issue, Severity, StateError
from .report import CoherenceReport, load_state, project_status, save_state
from .ripple import CHANGE_TYPES, FileImpact, RippleQuery

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="🔗 Coherence CLI: find broken imports, missing exports, cycles and contract drift in JS/TS projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
alias_app = typer.Typer(help="🧭 Manage import path aliases")
config_app = typer.Typer(help="⚙️  Inspect and initialize settings")
app.add_typer(alias_app, name="alias")
app.add_typer(config_app, name="config")

ISSUES_PER_CATEGORY = 5

SEVERITY_STYLE = {
    Severity.ERROR: ("✗", "red"),
    Severity.WARNING: ("⚠", "yellow"),
    Severity.INFO: ("ℹ", "blue"),
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Coherence CLI v{__version__}")
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
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Coherence CLI: static dependency checks without a full build."""
    _setup_logging(verbose)


def _settings_for(root: Path) -> EngineSettings:
    try:
        return load_settings(root)
    except ConfigError as exc:
        err_console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)


def _score_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    return "red"


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

def _location(issue: Issue) -> str:
    return f"{issue.file}:{issue.line}" if issue.line else issue.file


def _render_issue(issue: Issue) -> None:
    icon, color = SEVERITY_STYLE[issue.severity]
    console.print(
        f"  [{color}]{icon}[/{color}] [cyan]{escape(_location(issue))}[/cyan]  {escape(issue.message)}",
        highlight=False,
    )
    if issue.fix:
        suffix = " [green](auto-fixable)[/green]" if issue.auto_fixable else ""
        console.print(f"      [dim]→ {escape(issue.fix)}[/dim]{suffix}", highlight=False)


def _render_report(report: CoherenceReport, show_all: bool) -> None:
    stats = report.stats
    counts = report.severity_counts

    table = Table(title="Coherence Summary", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Files scanned", str(stats.files_scanned))
    table.add_row("Imports checked", f"{stats.imports_checked} ({stats.external_imports} external)")
    table.add_row("Exports found", str(stats.exports_found))
    table.add_row("Env vars read", str(stats.env_vars_found))
    table.add_row("Errors", f"[red]{counts['error']}[/red]")
    table.add_row("Warnings", f"[yellow]{counts['warning']}[/yellow]")
    table.add_row("Info", f"[blue]{counts['info']}[/blue]")
    table.add_row("Auto-fixable", f"[green]{report.auto_fixable_count}[/green]")
    console.print(table)

    if stats.unreadable_files:
        console.print(f"[yellow]⚠ {stats.unreadable_files} file(s) could not be analyzed[/yellow]")
    if stats.unreadable_dirs:
        console.print(f"[yellow]⚠ {stats.unreadable_dirs} folder(s) could not be read[/yellow]")
    if stats.ambiguous_files:
        console.print(f"[yellow]⚠ {stats.ambiguous_files} file(s) had unrecognized import/export syntax[/yellow]")
    if stats.failed_detectors:
        console.print(
            f"[yellow]⚠ Partial report: {', '.join(stats.failed_detectors)} could not complete[/yellow]"
        )

    if not report.issues:
        console.print("\n[bold green]✓ No coherence issues found.[/bold green]")
        return

    for category, issues in report.by_category.items():
        console.print(f"\n[bold]{category.value.upper()}[/bold] ({len(issues)})")
        shown = issues if show_all else issues[:ISSUES_PER_CATEGORY]
        for issue in shown:
            _render_issue(issue)
        if len(issues) > len(shown):
            console.print(f"  [dim]... and {len(issues) - len(shown)} more (use --verbose)[/dim]")

    if report.auto_fixable_count:
        console.print(
            f"\n[green]{report.auto_fixable_count} issue(s) can be fixed automatically: "
            "run 'coherence heal' or 'coherence scan --fix'.[/green]"
        )


def _render_heal(result: HealResult) -> None:
    verb = "Would fix" if result.dry_run else "Fixed"
    console.print(f"\n[bold green]{verb} {len(result.fixed)} issue(s)[/bold green]")
    for issue in result.fixed:
        console.print(f"  [green]✓[/green] {escape(_location(issue))}  {escape(issue.message)}", highlight=False)
    if result.skipped:
        console.print(f"\n[bold yellow]Could not auto-fix {len(result.skipped)} issue(s)[/bold yellow]")
        for issue, reason in result.skipped:
            console.print(f"  [yellow]•[/yellow] {escape(_location(issue))}  {escape(reason)}", highlight=False)


def _render_impacts(title: str, impacts: List[FileImpact], excerpts: bool) -> None:
    if not impacts:
        return
    console.print(f"\n[bold]{title}[/bold]")
    for impact in impacts:
        console.print(f"  • [cyan]{escape(impact.path)}[/cyan] ({impact.usage_count} usages)", highlight=False)
        if not excerpts:
            continue
        if impact.import_line:
            console.print(f"      [dim]import:[/dim] {escape(impact.import_line)}", highlight=False)
        for number, text in impact.excerpts:
            console.print(f"      [dim]{number}:[/dim] {escape(text)}", highlight=False)
        if impact.usage_count > len(impact.excerpts):
            console.print(f"      [dim]... and {impact.usage_count - len(impact.excerpts)} more[/dim]")


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

@app.command("scan")
def scan(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
    focus: Focus = typer.Option(Focus.ALL, "--focus", "-f", help="Limit the checks that run."),
    fix: bool = typer.Option(False, "--fix", help="Apply safe automatic fixes, then rescan."),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show every issue and debug logging."),
    include_deps: bool = typer.Option(False, "--include-deps", help="Also walk dependency directories."),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON."),
):
    """Scan a project and report coherence issues.

    Exits with code 1 when error-severity issues remain.

    Example:
      coherence scan ./my-app --focus imports
    """
    if verbose:
        _setup_logging(True)
    settings = _settings_for(root)
    if include_deps:
        settings.include_dependency_dirs = True

    engine = CoherenceEngine(root, settings)
    try:
        if json_output:
            report, healed = engine.audit(focus, auto_fix=fix)
        else:
            with console.status(f"[cyan]Scanning {root}...[/cyan]"):
                report, healed = engine.audit(focus, auto_fix=fix)
    except CoherenceError as exc:
        err_console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)

    try:
        save_state(root, report)
    except StateError as exc:
        err_console.print(f"[yellow]⚠[/yellow] {escape(str(exc))}")

    if json_output:
        payload = report.to_dict()
        payload["heal"] = healed.to_dict() if healed else None
        typer.echo(json.dumps(payload, indent=2))
    else:
        if healed is not None:
            _render_heal(healed)
        _render_report(report, show_all=verbose)

    raise typer.Exit(code=1 if report.errors else 0)


@app.command("heal")
def heal(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing."),
):
    """Apply automatic fixes for the auto-fixable issues of the last scan."""
    try:
        state = load_state(root)
    except StateError as exc:
        err_console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    fixable = [i for i in state.issues if i.auto_fixable]
    if not fixable:
        console.print("[green]Nothing to fix: the last scan found no auto-fixable issues.[/green]")
        raise typer.Exit(code=0)

    result = AutoHealer(root, dry_run=dry_run).heal(fixable)
    _render_heal(result)

    if result.fixed and not dry_run:
        report = CoherenceEngine(root, _settings_for(root)).run(state.focus)
        save_state(root, report)
        console.print(f"\n[dim]Rescanned: {len(report.issues)} issue(s) remain.[/dim]")


@app.command("status")
def status(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
):
    """Show project health from the last scan without rescanning."""
    try:
        current = project_status(root)
    except StateError as exc:
        err_console.print(f"[red]✗[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    color = _score_color(current.health)
    console.print(
        Panel.fit(
            f"[bold {color}]{current.health}%[/bold {color}]",
            title="[bold]Coherence Health[/bold]",
            border_style=color,
        )
    )
    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Last audit", f"{current.last_audit.isoformat()} ({current.age_text})")
    table.add_row("Focus", current.focus.value)
    table.add_row("Errors", str(current.severity_counts["error"]))
    table.add_row("Warnings", str(current.severity_counts["warning"]))
    table.add_row("Info", str(current.severity_counts["info"]))
    table.add_row("Auto-fixable", str(current.auto_fixable))
    console.print(table)
    if current.partial:
        console.print("[yellow]⚠ The last scan was partial; some files or detectors could not complete.[/yellow]")


@app.command("ripple")
def ripple(
    entity: str = typer.Argument(..., help="Type, function or component name to trace."),
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
    change_type: Optional[str] = typer.Option(
        None, "--change-type", "-c", help=f"One of: {', '.join(CHANGE_TYPES)}."
    ),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="What is changing."),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON."),
):
    """Find every file that references ENTITY and rank the impact of changing it."""
    query = RippleQuery(root, _settings_for(root), cache=TTLCache(ttl=60))
    try:
        result = query.run(entity, change_type=change_type, description=description)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    console.print(f"\n[bold cyan]Ripple check: {result.entity}[/bold cyan]")
    if description:
        console.print(f"[dim]{description}[/dim]")
    if not result.total_files:
        console.print(f"[green]✓ No references to '{result.entity}' found; the change has no ripple.[/green]")
        return

    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Files affected", str(result.total_files))
    table.add_row("Total usages", str(result.total_usages))
    table.add_row("Definition", escape(result.definition.path) if result.definition else "[dim]not found[/dim]")
    console.print(table)

    _render_impacts("🔴 High impact (5+ usages)", result.high, excerpts=True)
    _render_impacts("🟡 Medium impact (2-4 usages)", result.medium, excerpts=False)
    _render_impacts("🟢 Low impact (1 usage)", result.low, excerpts=False)

    console.print(
        Panel(
            "\n".join(result.guidance),
            title="[bold]Recommendations[/bold]",
            border_style="cyan",
        )
    )


@app.command("graph")
def graph(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
    fmt: str = typer.Option("html", "--format", help="Export format: html or dot."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path."),
    focus: str = typer.Option("", "--focus", help="Only modules whose path contains this text, plus neighbors."),
):
    """Export the module graph to standalone HTML or Graphviz DOT."""
    fmt = fmt.lower()
    if fmt not in {"html", "dot"}:
        raise typer.BadParameter("Format must be one of: html, dot")

    module_graph = CoherenceEngine(root, _settings_for(root)).build_graph()
    if output is None:
        output = Path.cwd() / f"{root.name}_modules.{fmt}"

    if fmt == "html":
        export_html(module_graph, output, focus=focus)
    else:
        export_dot(module_graph, output, focus=focus)

    typer.echo(f"Exported {len(module_graph.modules)} modules to {output}")


@alias_app.command("set")
def alias_set(
    prefix: str = typer.Argument(..., help="Import prefix, e.g. '@lib/'."),
    directory: str = typer.Argument(..., help="Root-relative directory the prefix maps to."),
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
):
    """Write a path alias into tsconfig.json (or jsconfig.json) compilerOptions.paths."""
    try:
        written = write_tsconfig_alias(root, prefix, directory)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc))
    typer.echo(f"Alias '{prefix}' -> '{directory}' written to {written.name}")


@alias_app.command("list")
def alias_list(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
):
    """Show the effective alias prefixes used for import resolution."""
    settings = _settings_for(root)
    table = Table(title="Path Aliases")
    table.add_column("Prefix", style="cyan")
    table.add_column("Directory")
    for prefix, directory in sorted(settings.aliases.items()):
        table.add_row(prefix, directory or "[dim](project root)[/dim]")
    console.print(table)


@config_app.command("show")
def config_show(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
):
    """Show the effective settings for a project."""
    settings = _settings_for(root)
    table = Table(title="Effective Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in settings.to_dict().items():
        table.add_row(key, json.dumps(value))
    console.print(table)


@config_app.command("init")
def config_init(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, resolve_path=True, help="Project root."),
    user: bool = typer.Option(False, "--user", help="Write the per-user config instead of the project file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing [coherence] table."),
):
    """Write the effective settings to .coherence.toml (or the per-user config.toml)."""
    target = config.USER_CONFIG_FILE if user else root / config.PROJECT_CONFIG_FILE
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists; use --force to overwrite.[/yellow]")
        raise typer.Exit(code=1)
    try:
        written = save_settings(_settings_for(root), target)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc))
    typer.echo(f"Settings written to {written}")
