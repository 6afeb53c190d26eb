"""pai CLI - Typer-based command-line interface.

    pai action list [--table]
    pai action show NAME
    pai action run NAME [--input JSON] [--mode local|cloud] [--key value ...]
    pai pipeline list [--table]
    pai pipeline run NAME [--input JSON] [--mode local|cloud] [--key value ...]
    pai info
    pai version
"""

import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from pai.config.settings import EngineSettings, find_config_file, load_settings
from pai.core.context import TraceInfo
from pai.core.pipeline import PipelineRunner
from pai.core.result import ResultEnvelope
from pai.core.runner import ActionRunner
from pai.exceptions import PaiError
from pai.observability.logging import enable_structured_logging

app = typer.Typer(
    name="pai",
    help="pai - run actions and pipelines",
    add_completion=False,
)
action_app = typer.Typer(help="Run and inspect actions", add_completion=False)
pipeline_app = typer.Typer(help="Run and inspect pipelines", add_completion=False)
app.add_typer(action_app, name="action")
app.add_typer(pipeline_app, name="pipeline")

console = Console()
err_console = Console(stderr=True)

RUN_CONTEXT = {"allow_extra_args": True, "ignore_unknown_options": True}


class CliState:
    def __init__(self, config_path: Optional[Path]):
        self.config_path = config_path
        self._settings: Optional[EngineSettings] = None

    @property
    def settings(self) -> EngineSettings:
        if self._settings is None:
            self._settings = load_settings(self.config_path)
        return self._settings


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to pai.yaml"),
    log_json: bool = typer.Option(False, "--log-json", help="Emit structured JSON events to stderr"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """pai - action and pipeline execution engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if log_json:
        enable_structured_logging()
    ctx.obj = CliState(config)


def parse_extra_args(args: list[str]) -> dict[str, Any]:
    """Parse trailing ``--key value`` pairs.

    Values are JSON-decoded when possible, otherwise kept as strings. A flag
    with no value (or followed by another flag) is True. ``--key=value`` is
    accepted too.

    Example:
        >>> parse_extra_args(["--count", "3", "--name", "world", "--dry-run"])
        {'count': 3, 'name': 'world', 'dry-run': True}
    """
    parsed: dict[str, Any] = {}
    index = 0
    while index < len(args):
        token = args[index]
        if not token.startswith("--") or token == "--":
            raise typer.BadParameter(f"Unexpected argument '{token}'. Use --key value pairs.")

        key = token[2:]
        if "=" in key:
            key, raw = key.split("=", 1)
            index += 1
        elif index + 1 < len(args) and not args[index + 1].startswith("--"):
            raw = args[index + 1]
            index += 2
        else:
            parsed[key] = True
            index += 1
            continue

        parsed[key] = _decode_value(raw)
    return parsed


def _decode_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def build_input(input_json: Optional[str], extra_args: list[str]) -> Any:
    """Assemble the run input from --input, stdin and trailing pairs.

    Without --input and without trailing pairs, JSON is read from stdin when
    stdin is not a terminal.
    """
    extra = parse_extra_args(extra_args)

    if input_json is not None:
        try:
            data = json.loads(input_json)
        except ValueError as e:
            raise typer.BadParameter(f"--input is not valid JSON: {e}")
    elif not extra and not sys.stdin.isatty():
        text = sys.stdin.read()
        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError as e:
            raise typer.BadParameter(f"stdin is not valid JSON: {e}")
    else:
        data = {}

    if extra:
        if not isinstance(data, dict):
            raise typer.BadParameter("--key value pairs require the input to be a JSON object")
        data = {**data, **extra}
    return data


def _trace(trace_id: Optional[str]) -> Optional[TraceInfo]:
    if not trace_id:
        return None
    return TraceInfo(trace_id=trace_id, span_id=uuid.uuid4().hex[:16])


def _emit_result(result: ResultEnvelope) -> None:
    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        err_console.print(f"[red]✗ {result.error}[/red]")
        raise typer.Exit(code=1)


def _settings(ctx: typer.Context) -> EngineSettings:
    try:
        return ctx.obj.settings
    except PaiError as e:
        err_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


# =============================================================================
# Actions
# =============================================================================


@action_app.command("list")
def action_list(
    ctx: typer.Context,
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON"),
):
    """List available actions (user actions shadow system ones)."""
    settings = _settings(ctx)
    runner = ActionRunner.from_settings(settings)
    summaries = runner.catalog.list()

    if not table:
        typer.echo(json.dumps([s.to_dict() for s in summaries], indent=2))
        return

    output = Table(show_header=True, header_style="bold")
    output.add_column("Action", style="cyan")
    output.add_column("Version")
    output.add_column("Source")
    output.add_column("Description")
    for summary in summaries:
        output.add_row(
            summary.name,
            summary.version or ("legacy" if summary.legacy else "-"),
            summary.source,
            summary.description or "",
        )
    console.print(output)


@action_app.command("show")
def action_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Action name"),
):
    """Show the resolved location and manifest of an action."""
    settings = _settings(ctx)
    runner = ActionRunner.from_settings(settings)

    location = runner.catalog.resolve(name)
    if location is None:
        err_console.print(f"[red]✗ Action not found: {name}[/red]")
        raise typer.Exit(code=1)

    try:
        action = runner.catalog.load(location)
    except PaiError as e:
        err_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    data = action.manifest.model_dump()
    data["path"] = str(location.path)
    data["source"] = location.source
    data["legacy"] = location.legacy
    typer.echo(json.dumps(data, indent=2, default=str))


@action_app.command("run", context_settings=RUN_CONTEXT)
def action_run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Action name (A_NAME or category/name)"),
    input_json: Optional[str] = typer.Option(None, "--input", "-i", help="Input as JSON"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="local or cloud"),
    trace_id: Optional[str] = typer.Option(None, "--trace-id", help="Trace id to propagate"),
):
    """Run an action. Extra --key value pairs become input fields."""
    settings = _settings(ctx)
    data = build_input(input_json, ctx.args)

    runner = ActionRunner.from_settings(settings)
    result = runner.run(name, data, mode=mode, trace=_trace(trace_id))
    _emit_result(result)


# =============================================================================
# Pipelines
# =============================================================================


@pipeline_app.command("list")
def pipeline_list(
    ctx: typer.Context,
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON"),
):
    """List available pipelines (user pipelines shadow system ones)."""
    settings = _settings(ctx)
    runner = PipelineRunner.from_settings(settings)
    summaries = runner.loader.list()

    if not table:
        typer.echo(json.dumps([s.model_dump() for s in summaries], indent=2))
        return

    output = Table(show_header=True, header_style="bold")
    output.add_column("Pipeline", style="cyan")
    output.add_column("Form")
    output.add_column("Steps", justify="right")
    output.add_column("Source")
    output.add_column("Description")
    for summary in summaries:
        output.add_row(
            summary.name,
            summary.form or "-",
            str(summary.steps) if summary.steps is not None else "-",
            summary.source,
            summary.description or "",
        )
    console.print(output)


@pipeline_app.command("run", context_settings=RUN_CONTEXT)
def pipeline_run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pipeline name"),
    input_json: Optional[str] = typer.Option(None, "--input", "-i", help="Input as JSON"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="local or cloud"),
    trace_id: Optional[str] = typer.Option(None, "--trace-id", help="Trace id to propagate"),
    progress: bool = typer.Option(False, "--progress", help="Print step progress to stderr"),
):
    """Run a pipeline. Extra --key value pairs become input fields."""
    settings = _settings(ctx)
    data = build_input(input_json, ctx.args)

    on_progress = _print_progress if progress else None
    runner = PipelineRunner.from_settings(settings, on_progress=on_progress)
    result = runner.run(name, data, mode=mode, trace=_trace(trace_id))
    _emit_result(result)


def _print_progress(event: dict[str, Any]) -> None:
    kind = event["type"]
    if kind == "step_started":
        err_console.print(f"▶ {event['step']}: {event['action']}")
    elif kind == "step_completed":
        err_console.print(f"  [green]✓[/green] {event['step']}")
    elif kind == "step_failed":
        err_console.print(f"  [red]✗[/red] {event['step']}: {event['error']}")


# =============================================================================
# Misc
# =============================================================================


@app.command()
def info(ctx: typer.Context):
    """Show resolved configuration and roots."""
    settings = _settings(ctx)
    config_file = find_config_file(ctx.obj.config_path)

    console.print("[bold]Configuration:[/bold]")
    console.print(f"  Config file: {config_file or '(none, using defaults)'}")
    console.print(f"  Mode: {settings.mode}")
    console.print(f"  Cloud subdomain: {settings.cloud.subdomain or '(not set)'}")
    console.print(f"  LLM service: {settings.llm.url or '(not set)'}")

    console.print("\n[bold]Roots:[/bold]")
    for label, path in settings.roots:
        marker = "[green]✓[/green]" if path.exists() else "[yellow]-[/yellow]"
        console.print(f"  {marker} {label}: {path}")

    from pai.core.registry import EXECUTORS_GROUP, PluginRegistry

    console.print("\n[bold]Executors:[/bold]")
    for name in PluginRegistry().list_group(EXECUTORS_GROUP):
        console.print(f"  [green]✓[/green] {name}")


@app.command()
def version():
    """Show pai version."""
    from pai import __version__
    console.print(f"pai version: {__version__}")


if __name__ == "__main__":
    app()
