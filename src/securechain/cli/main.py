"""Main CLI entry point for SecureChain."""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from securechain import __version__
from securechain.backends.registry import BackendRegistry
from securechain.config.settings import Platform, Settings
from securechain.core.pipeline import AnalysisPipeline
from securechain.core.scheduler import TaskState
from securechain.errors import SecureChainError
from securechain.logging_config import setup_logging
from securechain.models.identity import BackendIdentity
from securechain.models.report import Report

console = Console()

SEVERITY_COLORS = {
    "critical": "red",
    "high": "orange3",
    "medium": "yellow",
    "low": "blue",
    "informational": "dim",
}


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="TOML settings file",
)
@click.option("--debug", is_flag=True, help="Show tracebacks on errors")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], debug: bool) -> None:
    """SecureChain - smart contract vulnerability analysis orchestrator.

    Runs static analyzers, fuzzers and AI auditors against a contract and
    merges their findings into a single deduplicated report.
    """
    settings = Settings.from_toml(config_path) if config_path else Settings()
    setup_logging("DEBUG" if debug else settings.log_level, settings.log_format)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--platform",
    "-p",
    type=click.Choice([p.value for p in Platform]),
    help="Contract platform (detected from file extensions if omitted)",
)
@click.option(
    "--backend",
    "-b",
    "backends",
    multiple=True,
    type=str,
    help="Specific backends to run (e.g., slither, ai-auditor)",
)
@click.option(
    "--timeout",
    type=float,
    help="Maximum analysis time in seconds",
)
@click.option(
    "--no-cache",
    is_flag=True,
    help="Ignore cached results (fresh results are still cached)",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["summary", "json"]),
    default="summary",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the JSON report to this file",
)
@click.option(
    "--save",
    is_flag=True,
    help="Write the JSON report to the results directory",
)
@click.pass_context
def analyze(
    ctx: click.Context,
    path: Path,
    platform: Optional[str],
    backends: List[str],
    timeout: Optional[float],
    no_cache: bool,
    output_format: str,
    output: Optional[Path],
    save: bool,
) -> None:
    """Analyze a smart contract for vulnerabilities.

    PATH is a contract source file or a directory of sources.
    """
    settings: Settings = ctx.obj["settings"]

    if output_format == "summary":
        console.print(f"\n[bold blue]SecureChain Analysis[/bold blue] v{__version__}")
        console.print(f"Target: [yellow]{path}[/yellow]")
        if backends:
            console.print(f"Backends: {', '.join(backends)}")
        console.print()

    try:
        pipeline = AnalysisPipeline(settings=settings)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Preparing job...", total=None)

            def on_progress(identity: BackendIdentity, state: TaskState) -> None:
                progress.update(task, description=f"{identity}: {state.value}")

            report = asyncio.run(
                pipeline.analyze(
                    path,
                    backends=list(backends) or None,
                    platform=Platform(platform) if platform else None,
                    timeout=timeout,
                    use_cache=not no_cache,
                    progress=on_progress,
                )
            )
    except SecureChainError as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        if ctx.obj.get("debug"):
            console.print_exception()
        sys.exit(1)

    if output or save:
        saved = pipeline.save_report(report, output)
        if output_format == "summary":
            console.print(f"[green]✓[/green] Report saved to: {saved}")

    if output_format == "json":
        click.echo(report.model_dump_json(indent=2))
    else:
        display_summary(report)

    if report.has_critical_findings:
        sys.exit(2)


def display_summary(report: Report) -> None:
    """Display analysis summary in terminal."""
    console.print("\n[bold green]Analysis Complete![/bold green]\n")
    console.print(report.to_summary())

    if report.findings:
        console.print("\n[bold]Vulnerabilities Found:[/bold]\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim", width=12)
        table.add_column("Severity", justify="center")
        table.add_column("Category", style="cyan")
        table.add_column("Location")
        table.add_column("Title")
        table.add_column("Confidence", justify="right")
        table.add_column("Sources")

        for finding in report.findings:
            color = SEVERITY_COLORS.get(finding.severity.value, "white")
            table.add_row(
                finding.id[:12],
                f"[{color}]{finding.severity.value.upper()}[/{color}]",
                finding.category.value,
                str(finding.primary_location),
                finding.title[:50] + "..." if len(finding.title) > 50 else finding.title,
                f"{finding.confidence:.0%}",
                ", ".join(s.key for s in finding.sources),
            )

        console.print(table)

    if report.coverage_warning:
        console.print(f"\n[yellow]Warning:[/yellow] {report.coverage_warning}")


@cli.command()
@click.option(
    "--platform",
    "-p",
    type=click.Choice([p.value for p in Platform]),
    help="Only show enabled backends for this platform",
)
@click.pass_context
def backends(ctx: click.Context, platform: Optional[str]) -> None:
    """List configured analysis backends and their status."""
    settings: Settings = ctx.obj["settings"]
    if platform:
        names = settings.enabled_backends(Platform(platform))
    else:
        names = list(settings.backends)

    registry = BackendRegistry.from_settings(settings)

    console.print("\n[bold]Configured Analysis Backends:[/bold]\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Backend", style="cyan")
    table.add_column("Version")
    table.add_column("Kind")
    table.add_column("Status", justify="center")
    table.add_column("Platforms")
    table.add_column("Executable")
    table.add_column("Available", justify="center")
    table.add_column("Timeout", justify="right")

    for name in names:
        config = settings.get_backend_config(name)
        status = "[green]Enabled[/green]" if config.enabled else "[red]Disabled[/red]"
        adapter = registry.get(name)
        if adapter is None:
            available = "[dim]-[/dim]"
        elif adapter.is_available():
            available = "[green]yes[/green]"
        else:
            available = "[red]missing[/red]"
        table.add_row(
            name,
            config.version,
            config.kind.value,
            status,
            ", ".join(sorted(p.value for p in config.platforms)),
            config.executable or "N/A",
            available,
            f"{config.timeout:g}s",
        )

    console.print(table)


if __name__ == "__main__":
    cli()
