"""busctl — replay dispatch scenarios and inspect channel expansion."""

from __future__ import annotations

import asyncio
import json
import sys

import click
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from core.config import BusSettings
from core.event_bus import EventBus
from core.logging_config import setup_json_logging
from scenario.definition import ScenarioDefinition
from scenario.runner import ScenarioResult, ScenarioRunner

console = Console()
err_console = Console(stderr=True)

_EVENT_COLOR: dict[str, str] = {
    "marker": "dim",
    "run": "green",
    "start": "yellow",
    "end": "green",
    "error": "red",
}


# ── Internal helpers ──────────────────────────────────────────────────────────


def _color(event: str) -> str:
    return _EVENT_COLOR.get(event, "white")


def _load_file(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) if path.endswith((".yaml", ".yml")) else json.load(f)


def _die(msg: str, code: int = 1) -> None:
    err_console.print(f"[red]Error:[/] {msg}")
    sys.exit(code)


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    envvar="BUS_LOG_LEVEL",
    show_default=True,
    help="Log level for the JSON logs written to stderr.",
)
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON.")
@click.pass_context
def cli(ctx: click.Context, log_level: str, json_output: bool) -> None:
    """Channel bus — scenario runner and expansion inspector."""
    setup_json_logging(log_level, stream=sys.stderr)
    ctx.ensure_object(dict)
    ctx.obj["json_output"] = json_output


# ── busctl run ────────────────────────────────────────────────────────────────


@cli.command("run")
@click.argument("file", type=click.Path(exists=True))
@click.option("--trace", is_flag=True, help="Print the dispatch trace summary.")
@click.pass_obj
def run(obj: dict, file: str, trace: bool) -> None:
    """Replay a scenario (YAML or JSON file) and print the delivery log."""
    try:
        definition = ScenarioDefinition.model_validate(_load_file(file))
    except ValidationError as e:
        _die(f"Invalid scenario '{file}':\n{e}")
        return

    result = asyncio.run(ScenarioRunner(BusSettings.from_env()).run(definition))

    if obj["json_output"]:
        click.echo(json.dumps(result.model_dump(), indent=2, default=str))
        return

    _print_result(result)
    if trace:
        click.echo(result.trace_summary)


def _print_result(result: ScenarioResult) -> None:
    console.print(f"Scenario: [cyan]{result.name}[/]\n")

    table = Table(box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("t (ms)", justify="right")
    table.add_column("Event")
    table.add_column("Listener", style="cyan")
    table.add_column("Channel")
    for i, entry in enumerate(result.log, start=1):
        label = entry.note if entry.event == "marker" else entry.event
        table.add_row(
            str(i),
            f"{entry.at_ms:.1f}",
            f"[{_color(entry.event)}]{label}[/]",
            entry.listener or "",
            entry.channel or "",
        )
    console.print(table)

    for send in result.sends:
        if send.errors:
            console.print(f"[red]{send.channel}[/]: {len(send.errors)} error(s)")
            for err in send.errors:
                console.print(f"  [red]{err[:80]}[/]")


# ── busctl expand ─────────────────────────────────────────────────────────────


@cli.command("expand")
@click.argument("channel")
@click.option("--sep", default=None, help="Separator between channel and id.")
@click.pass_obj
def expand(obj: dict, channel: str, sep: str | None) -> None:
    """Show which subscription channels a send to CHANNEL reaches."""
    try:
        bus = EventBus(sep, settings=BusSettings.from_env())
    except ValidationError as e:
        _die(str(e))
        return

    channels = bus.expand_channel(channel)
    if obj["json_output"]:
        click.echo(json.dumps(channels))
        return
    click.echo(" → ".join(channels))
