"""
CLI interface for Doc Migrator.

Provides command-line access to migration runs, estimates and run state.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from doc_migrator.config.loader import DEFAULT_CONFIG_FILE, load_api_key, load_config
from doc_migrator.config.plan import load_migration_plan
from doc_migrator.core.cost_tracker import BudgetExceeded
from doc_migrator.core.estimation import EstimateVerdict, PlanEstimate, estimate_plan
from doc_migrator.core.orchestrator import MigrationRun, RunSummary
from doc_migrator.sdk import DocumentMigrationWorker, GuardedLLMClient
from doc_migrator.storage.lock import LockManager
from doc_migrator.storage.models import WorkflowStage
from doc_migrator.storage.workflow_state import WorkflowStateManager

app = typer.Typer()
console = Console()

# Exit codes - WARN is non-failing (0)
EXIT_CODE_PASS = 0
EXIT_CODE_WARN = 0
EXIT_CODE_FAIL = 1


def _verdict_to_exit_code(verdict: EstimateVerdict) -> int:
    """Convert estimate verdict to CLI exit code."""
    return {
        EstimateVerdict.PASS: EXIT_CODE_PASS,
        EstimateVerdict.WARN: EXIT_CODE_WARN,
        EstimateVerdict.FAIL: EXIT_CODE_FAIL,
    }[verdict]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _resolve_config_path(config: Optional[Path], directory: Path) -> Optional[Path]:
    if config is not None:
        return config
    candidate = directory / DEFAULT_CONFIG_FILE
    return candidate if candidate.exists() else None


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Doc Migrator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Doc Migrator - Use --help to see available commands")


@app.command()
def migrate(
    plan_file: Path = typer.Argument(..., help="Migration plan YAML file"),
    tier: Optional[str] = typer.Option(None, "--tier", "-t", help="API rate limit tier"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Budget ceiling in USD"),
    no_budget: bool = typer.Option(False, "--no-budget", help="Run without a budget ceiling"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Concurrent workers"),
    stop_on_error: bool = typer.Option(False, "--stop-on-error", help="Stop starting tasks after a failure"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file"),
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run a migration plan against the LLM API."""
    _configure_logging(verbose)
    try:
        if no_budget and max_cost is not None:
            raise ValueError("--max-cost and --no-budget are mutually exclusive")
        settings = load_config(
            _resolve_config_path(config, directory),
            overrides={
                "api_tier": tier,
                "model": model,
                "max_cost": max_cost,
                "workers": workers,
                "stop_on_error": True if stop_on_error else None,
            },
            no_budget=no_budget,
        )
        api_key = load_api_key()
        plan = load_migration_plan(plan_file)

        client = GuardedLLMClient(api_key=api_key, model=settings.model, base_url=settings.base_url)
        worker = DocumentMigrationWorker(client, directory)

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            bar = progress.add_task("Migrating", total=len(plan.tasks))

            def on_progress(done, total, task):
                progress.update(bar, completed=done, total=total,
                                description=f"Migrating {task.source_path}" if task else "Migrating")

            run = MigrationRun(directory, worker, settings, on_progress=on_progress)
            summary = asyncio.run(run.run(plan))

        _display_run_summary(summary)
        sys.exit(EXIT_CODE_FAIL if summary.result.failed else EXIT_CODE_PASS)
    except BudgetExceeded as e:
        console.print(f"[red]Error:[/] {e}")
        console.print("Progress was saved; raise --max-cost or use --no-budget to resume.")
        sys.exit(EXIT_CODE_FAIL)
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[yellow]Interrupted.[/] Progress was saved; run again to resume.")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def estimate(
    plan_file: Path = typer.Argument(..., help="Migration plan YAML file"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to price against"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Budget ceiling in USD"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Concurrent workers"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file"),
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Project directory"),
    enforced: bool = typer.Option(False, "--enforced", "-e", help="Exit with error code if the estimate fails"),
):
    """
    Estimate the cost of a migration plan.

    This is a read-only operation: no API calls are made and no state is written.
    """
    try:
        settings = load_config(
            _resolve_config_path(config, directory),
            overrides={"model": model, "max_cost": max_cost, "workers": workers},
        )
        plan = load_migration_plan(plan_file)
        result = estimate_plan(
            plan,
            settings.model,
            max_cost=settings.max_cost,
            workers=settings.workers,
            avg_output_tokens_per_doc=settings.avg_output_tokens_per_doc,
        )
        _display_estimate(result)

        # WARN is non-failing; only an enforced FAIL sets a failing exit code
        if enforced:
            sys.exit(_verdict_to_exit_code(result.verdict))
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Project directory"),
):
    """Show the persisted run state."""
    try:
        manager = WorkflowStateManager(directory)
        state = manager.load()
        if state is None:
            console.print("No migration run found")
            sys.exit(EXIT_CODE_PASS)

        table = Table(title="Migration Run")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Stage", state.current_stage.value)
        table.add_row("Started", state.started_at)
        table.add_row("Updated", state.updated_at)
        table.add_row("API calls", str(state.api_call_count))
        table.add_row("Tokens", f"{state.total_tokens:,}")
        table.add_row("Cost", _format_currency(state.total_cost))
        table.add_row("Budget", _format_currency(state.max_cost) if state.max_cost is not None else "unlimited")
        if state.migration:
            table.add_row(
                "Documents",
                f"{state.migration.get('completed_count', 0)}/{state.migration.get('total_count', 0)}",
            )
        # migrate continues a failed run as well as an interrupted one
        resumable = manager.can_resume() or state.current_stage == WorkflowStage.FAILED
        table.add_row("Resumable", "yes" if resumable else "no")
        console.print(table)

        lock = LockManager(directory)
        record = lock.read()
        if record is not None:
            console.print(f"[yellow]Locked by PID {record.pid}[/]")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def unlock(
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Project directory"),
):
    """Force-release the project lock."""
    try:
        lock = LockManager(directory)
        if not lock.is_locked():
            console.print("No lock present")
            sys.exit(EXIT_CODE_PASS)
        record = lock.read()
        lock.force_release()
        owner = f" held by PID {record.pid}" if record is not None else ""
        console.print(f"[yellow]Warning:[/] removed lock{owner}")
        console.print("Make sure no migration is still running.")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def reset(
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Project directory"),
):
    """Delete the persisted run state."""
    try:
        WorkflowStateManager(directory).clear()
        console.print("[green]✓[/] Run state cleared")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


def _display_estimate(result: PlanEstimate) -> None:
    """Display a plan estimate."""
    console.print("\n[bold]Migration Estimate[/bold]")
    console.print("-" * 40)
    console.print(f"Documents: {result.task_count}")
    console.print(f"Input tokens: {result.input_tokens:,}")
    console.print(f"Output tokens: {result.output_tokens:,}")
    console.print(f"Estimated cost: {_format_currency(result.estimated_cost)}")
    console.print(f"Estimated time: {result.estimated_minutes:.1f} min")
    if result.max_cost is not None:
        console.print(f"Budget: {_format_currency(result.max_cost)}")
    color = {EstimateVerdict.PASS: "green", EstimateVerdict.WARN: "yellow", EstimateVerdict.FAIL: "red"}[result.verdict]
    console.print(f"\n[bold]Verdict:[/bold] [{color}]{result.verdict.name}[/]")


def _display_run_summary(summary: RunSummary) -> None:
    """Display the outcome of a run."""
    result = summary.result
    table = Table(title="Migration Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Completed", str(len(result.completed)))
    table.add_row("Failed", str(len(result.failed)))
    table.add_row("Skipped (already done)", str(summary.skipped))
    table.add_row("Tokens", f"{result.total_tokens:,}")
    table.add_row("Cost", _format_currency(result.total_cost))
    table.add_row("Time", f"{result.total_time:.1f}s")
    console.print(table)

    for failure in result.failed:
        console.print(f"[red]✗[/] {failure.task.source_path}: {failure.error}")


if __name__ == "__main__":
    app()
