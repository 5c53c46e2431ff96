"""
NeuroLint — Command Line Interface
==================================
Operator surface over the public operations.

Commands:
  transform  — Run layers over a file
  analyze    — Detect issues and recommend layers
  resolve    — Show the dependency-closed layer set
  layers     — List the layer catalog
  patterns   — Show learned patterns
  status     — Show executor status

Usage:
  python -m neurolint.orchestrator.cli transform src/App.tsx --layers 1,2,3
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from neurolint.config import NeuroLintSettings, build_executor, configure_logging

console = Console()
app = typer.Typer(name="neurolint", help="NeuroLint layered code transformation")

# Lazy-init global executor
_executor = None


def get_executor():
    global _executor
    if _executor is None:
        settings = NeuroLintSettings.from_env()
        configure_logging(settings)
        _executor = build_executor(settings)
    return _executor


def parse_layers(raw: str) -> List[int]:
    try:
        return [int(part) for part in raw.replace(" ", "").split(",") if part]
    except ValueError:
        raise typer.BadParameter(f"layers must be comma-separated integers, got {raw!r}")


def _read(path: Path) -> str:
    if not path.exists():
        console.print(f"[bold red]File not found: {path}[/bold red]")
        raise typer.Exit(1)
    return path.read_text()


# ── Commands ─────────────────────────────────────────────────────────────────

@app.command(name="transform")
def cmd_transform(
    path: Path = typer.Argument(..., help="Source file to transform"),
    layers: str = typer.Option("1,2,3,4", help="Comma-separated layer ids"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without writing or learning"),
    output: Optional[Path] = typer.Option(None, help="Write result here instead of in place"),
    verbose: bool = typer.Option(False, "--verbose", help="Log every layer step"),
    recovery: bool = typer.Option(False, "--recovery", help="Attempt automatic error recovery"),
    timeout_ms: Optional[float] = typer.Option(None, help="Overall timeout in milliseconds"),
):
    """Run the requested layers (plus dependencies) over a file."""
    code = _read(path)
    executor = get_executor()
    options = {"dryRun": dry_run, "verbose": verbose, "enableRecovery": recovery, "timeoutMs": timeout_ms}

    try:
        result = executor.transform(code, parse_layers(layers), options)
    except ValueError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(2)

    if result.resolution and result.resolution.warnings:
        for warning in result.resolution.warnings:
            console.print(f"[yellow]{warning}[/yellow]")
    _print_outcomes(result)

    if dry_run:
        if result.changed:
            console.print(Panel(Syntax(result.final_code, "tsx", line_numbers=True), title="Preview"))
        return
    if result.changed:
        target = output or path
        target.write_text(result.final_code)
        console.print(f"\n[green]Wrote {target}[/green]")
    else:
        console.print("\n[dim]No changes.[/dim]")


@app.command(name="analyze")
def cmd_analyze(path: Path = typer.Argument(..., help="Source file to analyze")):
    """Detect issues and recommend layers."""
    analysis = get_executor().analyze(_read(path))

    table = Table(title=f"Analysis of {path.name}")
    table.add_column("Layer", style="cyan")
    table.add_column("Issue", style="white")
    table.add_column("Severity", style="magenta")
    for issue in analysis.detected_issues:
        table.add_row(str(issue.fixed_by_layer), issue.description, issue.severity.value)
    console.print(table)

    impact = analysis.estimated_impact
    console.print(Panel(
        f"Recommended layers: [bold cyan]{analysis.recommended_layers or 'none'}[/bold cyan]\n"
        f"Confidence: {analysis.confidence:.0%}\n"
        f"Impact: {impact.level if impact else 'n/a'} ({impact.estimated_fix_time if impact else '-'})",
        title="RECOMMENDATION",
        border_style="green" if not analysis.detected_issues else "yellow",
    ))


@app.command(name="resolve")
def cmd_resolve(layers: str = typer.Argument(..., help="Comma-separated layer ids")):
    """Show the dependency-closed layer set."""
    try:
        resolution = get_executor().resolve_layers(parse_layers(layers))
    except ValueError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(2)
    console.print(f"Layers: [bold cyan]{list(resolution.corrected_layers)}[/bold cyan]")
    if resolution.auto_added:
        console.print(f"Auto-added: [yellow]{list(resolution.auto_added)}[/yellow]")
    for warning in resolution.warnings:
        console.print(f"[dim]{warning}[/dim]")


@app.command(name="layers")
def cmd_layers():
    """List the layer catalog."""
    from neurolint.layers.dependencies import LAYER_CATALOG

    table = Table(title="NeuroLint Layers")
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Depends On")
    table.add_column("Description", style="dim")
    for spec in LAYER_CATALOG.values():
        table.add_row(str(spec.id), spec.name, ", ".join(map(str, sorted(spec.depends_on))) or "-",
                      spec.description)
    console.print(table)


@app.command(name="patterns")
def cmd_patterns(clear: bool = typer.Option(False, "--clear", help="Delete all learned patterns")):
    """Show (or clear) learned patterns."""
    learner = get_executor().learner
    if clear:
        learner.repository.clear()
        console.print("[yellow]Learned patterns cleared.[/yellow]")
        return

    table = Table(title="Learned Patterns")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Confidence", style="green")
    table.add_column("Success / Failure")
    for pattern in learner.rules():
        table.add_row(pattern.name, pattern.category, f"{pattern.confidence:.2f}",
                      f"{pattern.success_count} / {pattern.failure_count}")
    console.print(table)


@app.command(name="status")
def cmd_status():
    """Show executor status."""
    status = get_executor().get_status()

    table = Table(title="NeuroLint Status", show_header=True)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in status.items():
        if key == "recent":
            continue
        table.add_row(str(key).replace("_", " ").title(), str(value))
    console.print(table)


# ── Result Printers ───────────────────────────────────────────────────────────

def _print_outcomes(result):
    state_style = {"completed": "green", "timed_out": "yellow", "cancelled": "red"}.get(
        result.final_state.value, "white")

    table = Table(title="Transformation Result")
    table.add_column("Layer", style="cyan")
    table.add_column("Result")
    table.add_column("Changes", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Detail", style="dim")
    for outcome in result.outcomes:
        if outcome.success:
            mark = "[green]committed[/green]" if outcome.change_count else "[dim]no change[/dim]"
            detail = "; ".join(outcome.improvements)
        else:
            mark = "[red]reverted[/red]" if outcome.revert_reason else "[red]failed[/red]"
            detail = outcome.revert_reason or outcome.error or ""
        table.add_row(f"{outcome.layer_id} {outcome.layer_name}", mark, str(outcome.change_count),
                      f"{outcome.execution_time_ms:.0f}ms", detail)
    console.print(table)
    console.print(
        f"State: [{state_style}]{result.final_state.value}[/{state_style}]  |  "
        f"Layers with changes: {result.successful_layers}  |  "
        f"Total: {result.total_execution_time_ms:.0f}ms"
    )


if __name__ == "__main__":
    app()
