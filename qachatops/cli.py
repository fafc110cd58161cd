"""CLI entry point for running test jobs outside the chat host."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from qachatops.models.config import EngineConfig
from qachatops.models.test_plan import TestJob
from qachatops.models.test_result import TestExecutionResult
from qachatops.orchestrator import Orchestrator

console = Console()

DEFAULT_CONFIG = "qachatops-config.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: str) -> EngineConfig:
    try:
        return EngineConfig.load(path)
    except FileNotFoundError:
        console.print(f"[yellow]Config file not found: {path}, using defaults[/yellow]")
        return EngineConfig()


def _load_job(path: str) -> TestJob:
    try:
        return TestJob.load(path)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid job file {path}: {escape(str(e))}[/red]")
        sys.exit(1)


def _print_result(result: TestExecutionResult) -> None:
    status = "[green]PASSED[/green]" if result.success else "[red]FAILED[/red]"
    table = Table(title=f"Job {result.job_id}")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("URL", result.url)
    table.add_row("Intent", result.test_intent)
    table.add_row("Status", status)
    table.add_row("Duration", f"{result.duration_seconds}s")
    table.add_row("Steps", f"{result.steps_passed}/{len(result.executed_steps)} succeeded")
    table.add_row("Screenshots", str(len(result.screenshot_paths)))
    table.add_row("Video", result.video_path or "-")
    table.add_row("Trace", result.trace_path or "-")
    if result.error_message:
        table.add_row("Error", f"[red]{escape(result.error_message)}[/red]")
    console.print(table)

    for step in result.executed_steps:
        icon = "[green]✓[/green]" if step.success else ("[yellow]✗[/yellow]" if step.is_optional else "[red]✗[/red]")
        console.print(f"  {icon} {escape(step.description or step.action)}")
        if step.error:
            console.print(f"     [dim]{escape(step.error)}[/dim]")
    for failure in result.cleanup_failures:
        console.print(f"  [yellow]cleanup {failure.step}: {escape(failure.error)}[/yellow]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """QA ChatOps test plan execution engine"""
    setup_logging(verbose)


@cli.command()
@click.option("--artifacts", "-a", default="wwwroot/artifacts", help="Artifacts root directory")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def init(artifacts: str, config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config} already exists. Overwrite?"):
            return
    cfg = EngineConfig(artifacts_root=artifacts)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")


@cli.command()
@click.argument("job_file")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def run(job_file: str, config: str) -> None:
    """Execute one job file ({"request": ..., "plan": ...})."""
    cfg = _load_config(config)
    job = _load_job(job_file)
    result = Orchestrator(cfg).run_job(job.request, job.plan)
    _print_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("job_files", nargs=-1, required=True)
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def batch(job_files: tuple[str, ...], config: str) -> None:
    """Execute several job files concurrently."""
    cfg = _load_config(config)
    jobs = [_load_job(path) for path in job_files]
    results = Orchestrator(cfg).run_batch(jobs)

    table = Table(title="Batch Summary")
    table.add_column("Job", style="bold")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Steps")
    for result in results:
        table.add_row(
            result.job_id,
            result.url,
            "[green]PASSED[/green]" if result.success else "[red]FAILED[/red]",
            f"{result.steps_passed}/{len(result.executed_steps)}",
        )
    console.print(table)
    if not all(r.success for r in results):
        sys.exit(1)


@cli.command()
@click.argument("job_id")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def show(job_id: str, config: str) -> None:
    """Show the saved result and artifacts of a job."""
    cfg = _load_config(config)
    orchestrator = Orchestrator(cfg)
    try:
        result = orchestrator.load_result(job_id)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    _print_result(result)
    for path in orchestrator.list_screenshots(job_id):
        console.print(f"  [blue]{path}[/blue]")


if __name__ == "__main__":
    cli()
