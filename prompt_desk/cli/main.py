"""
CLI interface for Prompt Desk.

Provides command-line access to all tool functionality.
"""

import logging
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from prompt_desk.config.loader import (
    AppConfig,
    ConfigurationError,
    load_api_key,
    load_app_config
)
from prompt_desk.core.extraction import ExtractionMode, extract
from prompt_desk.core.orchestrator import (
    Notification,
    NotificationLevel,
    RequestOrchestrator,
    RequestState,
    SessionContext
)
from prompt_desk.core.templating import extract_variables, missing_variables
from prompt_desk.sdk.openai_client import PromptClient
from prompt_desk.storage.models import PromptRecord
from prompt_desk.storage.repository import HistoryStore, SqliteKeyValueStore, initialize_schema

app = typer.Typer()
history_app = typer.Typer(help="Inspect and manage prompt history.")
app.add_typer(history_app, name="history")
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_USAGE = 2
EXIT_CODE_CANCELLED = 130


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="PROMPT_DESK_CONFIG",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show debug logging"
    )
):
    """Prompt Desk CLI."""
    _setup_logging(verbose)
    ctx.obj = {"config_path": str(config) if config else None}
    if ctx.invoked_subcommand is None:
        console.print("Prompt Desk - Use --help to see available commands")


def _load_config(ctx: typer.Context) -> AppConfig:
    config_path = (ctx.obj or {}).get("config_path")
    try:
        return load_app_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CODE_FAIL)


def _open_history(config: AppConfig) -> HistoryStore:
    return HistoryStore(
        SqliteKeyValueStore(config.history.db_path),
        namespace=config.history.namespace,
        capacity=config.history.capacity
    )


def _parse_vars(pairs: Optional[List[str]]) -> Dict[str, str]:
    values = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            console.print(f"[red]Invalid --var {escape(pair)!r}, expected KEY=VALUE[/]")
            raise typer.Exit(code=EXIT_CODE_USAGE)
        values[name.strip()] = value
    return values


def _notify(notification: Notification) -> None:
    if notification.level == NotificationLevel.ERROR:
        console.print(f"[red]{escape(notification.message)}[/]")
    else:
        console.print(escape(notification.message))


def _format_cost(amount: Decimal) -> str:
    """Format an estimated cost in dollars."""
    return f"${amount:,.6f}"


def _shorten(text: str, width: int = 40) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[:width - 1] + "…"


def _print_usage(record: PromptRecord) -> None:
    console.print(
        f"[dim]Tokens: {record.usage.input_tokens:,} in / {record.usage.output_tokens:,} out"
        f" | est. cost {_format_cost(record.estimated_cost)}"
        f" | model {escape(record.model)} | id {record.id[:8]}[/]"
    )


def _print_extracted(value: Optional[str]) -> None:
    if value is None:
        console.print("[yellow]Nothing extracted[/]")
    else:
        console.print(f"[green]Extracted:[/] {escape(value)}")


@app.command()
def init(ctx: typer.Context):
    """Initialize the local history database."""
    config = _load_config(ctx)
    try:
        initialize_schema(config.history.db_path)
        console.print("[green]✓[/] Database initialized successfully")
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CODE_FAIL)


@app.command("vars")
def list_vars(prompt: str = typer.Argument(..., help="Prompt text to scan")):
    """List the placeholders in a prompt, in order of first appearance."""
    names = extract_variables(prompt)
    if not names:
        console.print("[dim]No placeholders found.[/]")
        return
    for name in names:
        console.print(name)


@app.command()
def run(
    ctx: typer.Context,
    prompt: Optional[str] = typer.Argument(None, help="Prompt text, may contain {NAME} placeholders"),
    template: Optional[str] = typer.Option(
        None,
        "--template",
        "-t",
        help="Use a configured template instead of PROMPT"
    ),
    var: Optional[List[str]] = typer.Option(
        None,
        "--var",
        help="Placeholder value as KEY=VALUE (repeatable)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use"),
    temperature: Optional[float] = typer.Option(
        None,
        "--temperature",
        min=0.0,
        max=2.0,
        help="Sampling temperature"
    ),
    stream: bool = typer.Option(False, "--stream/--no-stream", help="Print the response as it arrives"),
    extract_pattern: Optional[str] = typer.Option(
        None,
        "--extract",
        "-x",
        help="Pattern used to extract a value from the response"
    ),
    mode: ExtractionMode = typer.Option(
        ExtractionMode.REGEX,
        "--mode",
        case_sensitive=False,
        help="How --extract is interpreted"
    )
):
    """
    Send a prompt to the model and record it in history.

    Placeholders without a --var value are sent as written.
    """
    config = _load_config(ctx)

    try:
        api_key = load_api_key()
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}.[/] Set it in the environment or a .env file.")
        raise typer.Exit(code=EXIT_CODE_FAIL)

    if template and prompt:
        console.print("[red]Use either PROMPT or --template, not both.[/]")
        raise typer.Exit(code=EXIT_CODE_USAGE)
    if template:
        try:
            prompt_text = config.get_template(template).body
        except KeyError:
            console.print(f"[red]Unknown template:[/] {escape(template)}")
            raise typer.Exit(code=EXIT_CODE_FAIL)
    elif prompt is not None:
        prompt_text = prompt
    else:
        console.print("[red]Provide a PROMPT or --template.[/]")
        raise typer.Exit(code=EXIT_CODE_USAGE)

    values = _parse_vars(var)
    unresolved = missing_variables(prompt_text, values)
    if unresolved:
        console.print(f"[yellow]Unresolved placeholders sent as-is:[/] {', '.join(unresolved)}")

    orchestrator = RequestOrchestrator(
        client=PromptClient(api_key),
        session=SessionContext(_open_history(config)),
        default_model=config.provider.model,
        rate_table=config.rate_table,
        default_temperature=config.provider.temperature,
        notify=_notify
    )

    def _print_chunk(chunk: str) -> None:
        console.print(chunk, end="", markup=False, highlight=False)

    try:
        outcome = orchestrator.submit(
            prompt_text,
            variables=values,
            model=model,
            temperature=temperature,
            stream=stream,
            on_chunk=_print_chunk if stream else None,
            extract_pattern=extract_pattern,
            extract_mode=mode
        )
    except KeyboardInterrupt:
        orchestrator.cancel()
        console.print("\n[yellow]Request cancelled[/]")
        raise typer.Exit(code=EXIT_CODE_CANCELLED)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CODE_FAIL)

    if outcome is None:
        console.print("[dim]Nothing to send.[/]")
        return
    record = outcome.record
    if record is None:
        raise typer.Exit(code=EXIT_CODE_FAIL)

    if stream:
        console.print()
    else:
        console.print(record.response, markup=False, highlight=False)
    _print_usage(record)
    if extract_pattern:
        _print_extracted(record.extracted)
    if outcome.state != RequestState.DONE:
        raise typer.Exit(code=EXIT_CODE_FAIL)


@app.command("extract")
def extract_command(
    ctx: typer.Context,
    pattern: str = typer.Argument(..., help="Regular expression or dot-separated path"),
    mode: ExtractionMode = typer.Option(
        ExtractionMode.REGEX,
        "--mode",
        case_sensitive=False,
        help="How PATTERN is interpreted"
    ),
    text: Optional[str] = typer.Option(
        None,
        "--text",
        help="Text to extract from (defaults to the latest response in history)"
    )
):
    """Extract a value from a response."""
    if text is None:
        records = _open_history(_load_config(ctx)).records
        if not records:
            console.print("[yellow]No history yet.[/]")
            raise typer.Exit(code=EXIT_CODE_FAIL)
        text = records[0].response

    _print_extracted(extract(text, pattern, mode))


@app.command()
def templates(ctx: typer.Context):
    """List configured prompt templates."""
    config = _load_config(ctx)
    if not config.templates:
        console.print("[dim]No templates configured.[/]")
        return

    table = Table(title="Templates")
    table.add_column("Name", style="bold")
    table.add_column("Placeholders")
    table.add_column("Body")
    for name in sorted(config.templates):
        template = config.templates[name]
        table.add_row(escape(name), ", ".join(template.variables) or "-", escape(_shorten(template.body, 60)))
    console.print(table)


@app.command()
def models(ctx: typer.Context):
    """List the models in the rate table."""
    config = _load_config(ctx)

    table = Table(title="Model rates (USD per 1K tokens)")
    table.add_column("Model", style="bold")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    for name in config.rate_table.models():
        rates = config.rate_table.get_rates(name)
        label = f"{name} (default)" if name == config.provider.model else name
        table.add_row(label, str(rates.input_per_1k), str(rates.output_per_1k))
    console.print(table)


def _find_record(history: HistoryStore, ref: str) -> PromptRecord:
    """Find a record by full id or unique id prefix."""
    record = history.get(ref)
    if record is not None:
        return record

    matches = [r for r in history.records if r.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        console.print(f"[red]No history record {escape(ref)}[/]")
    else:
        console.print(f"[red]Ambiguous record id {escape(ref)}[/]")
    raise typer.Exit(code=EXIT_CODE_FAIL)


@history_app.command("list")
def history_list(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of records to show")
):
    """Show recent prompts, most recent first."""
    records = _open_history(_load_config(ctx)).records[:limit]
    if not records:
        console.print("[dim]No history yet.[/]")
        return

    table = Table(title="Prompt history")
    table.add_column("ID", style="bold")
    table.add_column("When")
    table.add_column("Model")
    table.add_column("Prompt")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Rating", justify="center")
    for record in records:
        table.add_row(
            record.id[:8],
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            escape(record.model),
            escape(_shorten(record.resolved_prompt)),
            f"{record.usage.total_tokens:,}",
            _format_cost(record.estimated_cost),
            str(record.rating) if record.rating else "-"
        )
    console.print(table)


@history_app.command("show")
def history_show(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Record id or id prefix")
):
    """Show one history record in full."""
    record = _find_record(_open_history(_load_config(ctx)), record_id)

    console.print(f"[bold]Record {record.id}[/bold] ({record.timestamp.isoformat(timespec='seconds')})")
    if record.variables:
        for name, value in record.variables.items():
            console.print(f"  {escape(name)} = {escape(value)}")
    console.print("\n[bold]Prompt[/bold]")
    console.print(record.resolved_prompt, markup=False, highlight=False)
    console.print("\n[bold]Response[/bold]")
    console.print(record.response, markup=False, highlight=False)
    console.print()
    _print_usage(record)
    if record.extracted is not None:
        _print_extracted(record.extracted)
    if record.rating is not None:
        console.print(f"Rating: {record.rating}/5")
    if record.notes:
        console.print(f"Notes: {escape(record.notes)}")


@history_app.command("rate")
def history_rate(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Record id or id prefix"),
    rating: Optional[int] = typer.Option(None, "--rating", "-r", min=1, max=5, help="Rating from 1 to 5"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Free-form notes")
):
    """Rate a history record and/or attach notes."""
    if rating is None and notes is None:
        console.print("[red]Give --rating and/or --notes.[/]")
        raise typer.Exit(code=EXIT_CODE_USAGE)

    history = _open_history(_load_config(ctx))
    record = _find_record(history, record_id)
    history.annotate(record.id, rating=rating, notes=notes)
    console.print(f"[green]✓[/] Updated {record.id[:8]}")


@history_app.command("stats")
def history_stats(ctx: typer.Context):
    """Summarize token usage and estimated spend across history."""
    summary = _open_history(_load_config(ctx)).usage_summary()

    console.print("\n[bold]Prompt Desk Usage[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {summary['total_requests']:,}")
    console.print(f"Input tokens: {summary['input_tokens']:,}")
    console.print(f"Output tokens: {summary['output_tokens']:,}")
    console.print(f"Estimated cost: {_format_cost(summary['total_cost'])}")


@history_app.command("clear")
def history_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation")
):
    """Delete all history records."""
    history = _open_history(_load_config(ctx))
    if not yes:
        typer.confirm(f"Delete {len(history)} history records?", abort=True)
    history.clear()
    console.print("[green]✓[/] History cleared")


if __name__ == "__main__":
    app()
