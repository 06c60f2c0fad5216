"""
CLI interface for AI Reply Stream.

Provides command-line access to accounts, generation and history.
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ai_reply_stream.config.loader import ServiceConfig, default_config, load_service_config
from ai_reply_stream.core.orchestrator import GenerationOrchestrator
from ai_reply_stream.core.quota import QuotaLedger
from ai_reply_stream.storage.repository import fetch_result, initialize_schema
from ai_reply_stream.wire.decoder import VariantDemultiplexer
from ai_reply_stream.wire.frames import FrameKind

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class _DemuxTransport:
    """Feeds encoded frames straight into a local demultiplexer."""

    def __init__(self, demux: VariantDemultiplexer, show_frames: bool):
        self.demux = demux
        self.show_frames = show_frames

    async def write(self, data: bytes) -> None:
        for frame in self.demux.feed(data):
            if not self.show_frames:
                continue
            if frame.kind is FrameKind.CONTENT:
                console.print(f"[dim][{frame.index}][/] {frame.content!r}")
            else:
                label = "-" if frame.index is None else frame.index
                console.print(f"[bold][{label}] {frame.kind.value}[/]")


def _get_config(ctx: typer.Context) -> ServiceConfig:
    return (ctx.obj or {}).get("config") or default_config()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML service configuration"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """AI Reply Stream CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        ctx.obj = {"config": load_service_config(config) if config else default_config()}
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if ctx.invoked_subcommand is None:
        console.print("AI Reply Stream - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the AI Reply Stream database."""
    try:
        initialize_schema(_get_config(ctx).storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def account(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    allowance: Optional[int] = typer.Option(
        None,
        "--allowance",
        "-a",
        help="Monthly allowance (defaults to quota.default_monthly_allowance)"
    )
):
    """Create an account or change its monthly allowance."""
    config = _get_config(ctx)
    if allowance is None:
        allowance = config.quota.default_monthly_allowance
    try:
        QuotaLedger(config.storage.db_path).set_allowance(account_id, allowance)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Account {account_id} allowance set to {allowance}")


@app.command()
def quota(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier")
):
    """Show current usage against the monthly allowance."""
    state = QuotaLedger(_get_config(ctx).storage.db_path).status(account_id)
    if state is None:
        console.print(f"[red]Account not found:[/] {account_id}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Quota for {account_id}")
    table.add_column("Used", justify="right")
    table.add_column("Allowance", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Resets at")
    table.add_row(
        str(state.usage_count),
        str(state.monthly_allowance),
        str(state.remaining),
        state.period_reset_at.isoformat()
    )
    console.print(table)


@app.command()
def generate(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    message: str = typer.Argument(..., help="Client message to reply to"),
    urgency: str = typer.Option("standard", "--urgency", "-u"),
    message_type: str = typer.Option("question", "--message-type", "-t"),
    relationship_stage: str = typer.Option("established", "--relationship", "-r"),
    project_phase: str = typer.Option("active", "--phase", "-p"),
    client_name: Optional[str] = typer.Option(None, "--client-name"),
    variants: Optional[int] = typer.Option(
        None,
        "--variants",
        "-n",
        help="Number of variants (defaults to generation.variant_count)"
    ),
    show_frames: bool = typer.Option(
        False,
        "--show-frames",
        help="Print every frame as it arrives"
    )
):
    """Generate reply variants and render them as they stream."""
    config = _get_config(ctx)
    try:
        orchestrator = GenerationOrchestrator.from_config(config)
        request = orchestrator.build_request(
            account_id,
            message,
            {
                "urgency": urgency,
                "message_type": message_type,
                "relationship_stage": relationship_stage,
                "project_phase": project_phase,
                "client_name": client_name,
            },
            variant_count=variants,
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    demux = VariantDemultiplexer()
    demux.expect(request.variant_count)
    asyncio.run(orchestrator.serve(request, _DemuxTransport(demux, show_frames)))

    if demux.request_error:
        console.print(f"[red]Request denied:[/] {demux.request_error} ({demux.error_code})")
        sys.exit(EXIT_CODE_FAIL)

    _display_variants(demux)
    if demux.persisted:
        console.print(f"\n[dim]Saved as {demux.request_id}[/]")
    else:
        console.print("\n[yellow]Result was not saved to history[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    ctx: typer.Context,
    request_id: str = typer.Argument(..., help="Request identifier")
):
    """Show a persisted generation result."""
    result = fetch_result(request_id, _get_config(ctx).storage.db_path)
    if result is None:
        console.print(f"[red]No result found for[/] {request_id}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Request:[/bold] {result.request_id}")
    console.print(f"Account: {result.account_id}")
    console.print(f"Provider: {result.provider}")
    console.print(f"Estimated cost: {_format_currency(result.estimated_cost)}")
    console.print(f"Created: {result.created_at.isoformat()}")
    for variant in result.variants:
        title = f"#{variant.index} {variant.state}"
        if variant.tone:
            title += f" · {variant.tone}/{variant.length} · {variant.confidence:.2f}"
        body = variant.content if variant.state == "complete" else (variant.error or "")
        console.print(Panel(body or "[dim](empty)[/]", title=title))


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port")
):
    """Serve the streaming HTTP API."""
    import uvicorn

    from ai_reply_stream.api.app import create_app

    config = _get_config(ctx)
    initialize_schema(config.storage.db_path)
    uvicorn.run(create_app(GenerationOrchestrator.from_config(config)), host=host, port=port)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


def _display_variants(demux: VariantDemultiplexer):
    """Display the demultiplexed variants, one panel each."""
    for buffer in demux.ordered():
        if buffer.state == "complete" and buffer.metadata:
            meta = buffer.metadata
            title = f"#{buffer.index} {meta.tone}/{meta.length} · confidence {meta.confidence:.2f}"
            console.print(Panel(buffer.text, title=title, border_style="green"))
        elif buffer.state == "error":
            console.print(Panel(buffer.error or "", title=f"#{buffer.index} failed", border_style="red"))
        else:
            console.print(Panel("[dim](no output)[/]", title=f"#{buffer.index} {buffer.state}"))


if __name__ == "__main__":
    app()
