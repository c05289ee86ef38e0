#!/usr/bin/env python3
"""Yakuza command line interface.

Runs and inspects jobs for scrapers defined in an importable Python module.
The module must expose a ``register(yakuza)`` function that defines its
scrapers on the registry it is given.
"""

import asyncio
import importlib
import json
import logging
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from .config import get_settings
from .core import Job, JobState, TaskState, Yakuza, YakuzaError


app = typer.Typer(help="Yakuza job orchestration CLI")
console = Console()

STATE_STYLES = {
    TaskState.PENDING: "dim",
    TaskState.READY: "cyan",
    TaskState.RUNNING: "blue",
    TaskState.SUCCEEDED: "green",
    TaskState.FAILED: "bold red",
    TaskState.SKIPPED: "yellow",
}


def configure_logging(level: str) -> None:
    """Route engine logging through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def load_registry(module_path: str) -> Yakuza:
    """Import ``module_path`` and let it register its scrapers.

    Raises:
        typer.BadParameter: If the module cannot be imported or has no
            ``register`` function

    """
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise typer.BadParameter(f"Cannot import '{module_path}': {e}") from e

    register = getattr(module, "register", None)
    if not callable(register):
        raise typer.BadParameter(
            f"Module '{module_path}' has no register(yakuza) function"
        )

    yakuza = Yakuza(get_settings())
    register(yakuza)
    return yakuza


def parse_params(pairs: list[str], params_file: Path | None) -> dict[str, Any]:
    """Merge a YAML parameter file with ``key=value`` overrides.

    Values are parsed as YAML scalars, so ``pages=3`` yields an integer.
    """
    params: dict[str, Any] = {}
    if params_file is not None:
        with params_file.open(encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise typer.BadParameter(f"{params_file} must contain a mapping")
        params.update(loaded)

    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{pair}'")
        params[key.strip()] = yaml.safe_load(value)

    return params


def build_job(
    module_path: str, scraper: str, agent: str, params: dict[str, Any], routine: str | None
) -> Job:
    yakuza = load_registry(module_path)
    try:
        return yakuza.job(scraper, agent, params, routine=routine)
    except YakuzaError as e:
        console.print(f"[bold red]Cannot create job: {e}[/bold red]")
        raise typer.Exit(code=2) from e


def task_table(job: Job) -> Table:
    table = Table(title="Task States", show_header=True, header_style="bold magenta")
    table.add_column("Agent", style="cyan")
    table.add_column("Task", style="white")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="red")

    for instance in job.graph:
        style = STATE_STYLES[instance.state]
        attempts = instance.attempt + (0 if instance.state is TaskState.SKIPPED else 1)
        table.add_row(
            instance.agent,
            instance.name,
            f"[{style}]{instance.state.value.upper()}[/{style}]",
            str(attempts),
            str(instance.error.cause) if instance.error else "",
        )
    return table


@app.command()
def run(
    module: str = typer.Argument(..., help="Module exposing register(yakuza)"),
    scraper: str = typer.Argument(..., help="Scraper id"),
    agent: str = typer.Argument(..., help="Entry agent"),
    param: list[str] = typer.Option(
        [], "--param", "-p", help="Job parameter as key=value (repeatable)"
    ),
    params_file: Path | None = typer.Option(
        None, "--params-file", "-f", exists=True, dir_okay=False, help="YAML params"
    ),
    routine: str | None = typer.Option(None, "--routine", "-r", help="Agent routine"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
):
    """Run a job and report every task's final state."""
    configure_logging(get_settings().log_level)
    job = build_job(module, scraper, agent, parse_params(param, params_file), routine)

    async def _run():
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Running {scraper}.{agent}...", total=None)
            outcome = await job.run()
            progress.remove_task(task)
        return outcome

    outcome = asyncio.run(_run())

    if as_json:
        console.print_json(
            json.dumps(
                {
                    "job_id": outcome.job_id,
                    "state": outcome.state.value,
                    "results": outcome.results,
                    "errors": [str(e) for e in outcome.errors],
                },
                default=str,
            )
        )
    else:
        console.print(task_table(job))
        color = "green" if outcome.succeeded else "red"
        console.print(
            Panel.fit(
                f"[bold {color}]Job {outcome.state.value.upper()}[/bold {color}]\n"
                f"Job ID: {outcome.job_id}\n"
                f"Errors: {len(outcome.errors)}",
                title=f"{scraper}.{agent}",
            )
        )
        for error in outcome.errors:
            console.print(f"[red]✗ {error}[/red]")

    if outcome.state is JobState.FAILED:
        raise typer.Exit(code=1)


@app.command()
def graph(
    module: str = typer.Argument(..., help="Module exposing register(yakuza)"),
    scraper: str = typer.Argument(..., help="Scraper id"),
    agent: str = typer.Argument(..., help="Entry agent"),
    routine: str | None = typer.Option(None, "--routine", "-r", help="Agent routine"),
):
    """Show the resolved task graph a job would run."""
    job = build_job(module, scraper, agent, {}, routine)

    tree = Tree(f"[bold]{scraper}.{agent}[/bold] ({len(job.graph)} tasks)")
    for name in job.graph.agents:
        policy = job.graph.policy(name)
        limit = "unbounded" if policy.concurrency is None else str(policy.concurrency)
        label = f"[cyan]{name}[/cyan] concurrency={limit}"
        if policy.ordered:
            label += " ordered"
        if policy.halt_on_failure:
            label += " halt-on-failure"
        branch = tree.add(label)
        for instance in job.graph.agent_order(name):
            deps = ", ".join(d.key for d in instance.dependencies) or "-"
            branch.add(f"{instance.name} [dim]<- {deps}[/dim]")
    console.print(tree)


@app.command()
def scrapers(
    module: str = typer.Argument(..., help="Module exposing register(yakuza)"),
):
    """List the scrapers and agents a module registers."""
    yakuza = load_registry(module)

    table = Table(title="Scrapers", show_header=True, header_style="bold blue")
    table.add_column("Scraper", style="cyan")
    table.add_column("Agent", style="white")
    table.add_column("Tasks", justify="right")
    table.add_column("Routines", style="yellow")

    for scraper_id in yakuza.scrapers:
        definition = yakuza.get_scraper(scraper_id)
        for agent in definition.agents.values():
            table.add_row(
                scraper_id,
                agent.name,
                str(len(agent.tasks)),
                ", ".join(agent.routines) or "-",
            )
    console.print(table)


@app.callback()
def main():
    """Yakuza job orchestration CLI.

    Build task graphs from registered scrapers and run them as jobs.
    """
    pass


if __name__ == "__main__":
    app()
