"""Command-line interface for the KubeVision agent."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .agent import AgentConfig, CycleReport, KubeVisionAgent
from .agent.agent import run_agent
from .agent.sender import summarize
from .errors import ConfigError
from .utils import setup_logging

app = typer.Typer(
    name="kubevision-agent",
    help="Forward per-pod Kubernetes metrics from Prometheus to the KubeVision backend",
    add_completion=False,
)

console = Console()


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


def load_config(config_path: Optional[Path]) -> AgentConfig:
    """Load config from YAML or the environment, exiting on failure."""
    try:
        if config_path:
            return AgentConfig.from_yaml(config_path)
        return AgentConfig.from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def config_option():
    return typer.Option(None, "--config", "-c", help="YAML config file (defaults to environment)")


@app.command()
def run(config: Optional[Path] = config_option()):
    """Start the agent and forward metrics every scrape interval."""
    cfg = load_config(config)
    console.print(f"[bold]Starting KubeVision agent[/bold] (interval {cfg.scrape_interval:g}s)")
    console.print("Press Ctrl+C to stop\n")
    run_agent(config=cfg)


@app.command()
def scrape(
    config: Optional[Path] = config_option(),
    push: bool = typer.Option(False, "--push/--no-push", help="Deliver the batch to the backend"),
):
    """Run a single cycle and print the merged samples."""
    cfg = load_config(config)
    setup_logging(cfg.log_level, cfg.log_file)

    async def once() -> CycleReport:
        async with KubeVisionAgent(cfg) as agent:
            if push:
                return await agent.run_cycle()
            return await agent.scrape()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Querying Prometheus...", total=None)
        report = run_async(once())

    query_table = Table(title="Queries")
    query_table.add_column("Query", style="cyan")
    query_table.add_column("Status", no_wrap=True, min_width=7)
    query_table.add_column("Rows", justify="right")
    query_table.add_column("Time", justify="right")
    query_table.add_column("Error", style="red")
    for name, outcome in report.outcomes.items():
        query_table.add_row(
            name,
            outcome.status.value,
            str(len(outcome.result)),
            f"{outcome.duration * 1000:.0f}ms",
            escape(str(outcome.error)) if outcome.error else "",
        )
    console.print(query_table)

    table = Table(title=f"Samples @ {report.timestamp}")
    table.add_column("Namespace", style="cyan")
    table.add_column("Pod", style="green")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Restarts", justify="right")
    for sample in sorted(report.batch, key=lambda s: (s.namespace, s.pod)):
        table.add_row(
            escape(sample.namespace),
            escape(sample.pod),
            f"{sample.cpu:.4f}",
            f"{sample.memory:.0f}",
            str(sample.restarts),
        )
    console.print(table)

    if push:
        if report.send_error:
            console.print(f"[red]Delivery failed: {escape(str(report.send_error))}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]{summarize(report.send_result)}[/green]")


@app.command("show-config")
def show_config(config: Optional[Path] = config_option()):
    """Print the effective configuration."""
    cfg = load_config(config)
    lines = [
        f"[cyan]Prometheus:[/cyan] {cfg.prom_url}",
        f"[cyan]Backend:[/cyan] {cfg.backend_url}",
        f"[cyan]Interval:[/cyan] {cfg.scrape_interval:g}s",
        f"[cyan]Timeouts:[/cyan] query {cfg.query_timeout:g}s, push {cfg.push_timeout:g}s",
        "",
    ]
    for name, expression in cfg.queries.expressions().items():
        lines.append(f"[cyan]{name}:[/cyan] {escape(expression)}")
    console.print(Panel("\n".join(lines), title="KubeVision Agent", border_style="green"))


if __name__ == "__main__":
    app()
