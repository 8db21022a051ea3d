"""
hitl-chat CLI - approval server, terminal chat, Chainlit UI and reviewer commands.
"""

import subprocess
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from rich.console import Console

from ..approvals.backends import BACKENDS, HttpApprovalBackend
from ..approvals.manager import ApprovalError
from ..config import get_settings
from ..logging_config import setup_logging

console = Console()

# Chainlit entry file shipped inside the package
APP_PATH = Path(__file__).resolve().parents[1] / "ui" / "app.py"


def _reviewer(server: Optional[str]) -> HttpApprovalBackend:
    return HttpApprovalBackend(base_url=server or get_settings().approval_server_url)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """hitl-chat - chat agents whose tool calls need human approval."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(level="DEBUG" if verbose else None, rich=True, settings=get_settings())


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Host to bind to.")
@click.option("--port", default=8001, show_default=True, help="Port to listen on.")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, reload: bool) -> None:
    """Start the local approval server."""
    console.print(f"[bold green]Starting approval server on http://{host}:{port}[/bold green]")
    uvicorn.run(
        "hitl_chat.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="debug" if ctx.obj.get("verbose") else "info",
    )


@cli.command()
@click.argument("prompt")
@click.option(
    "--backend",
    type=click.Choice(BACKENDS, case_sensitive=False),
    default=None,
    help="Approval backend (defaults to APPROVAL_BACKEND).",
)
@click.option("--model", default=None, help="Chat model (defaults to OPENAI_MODEL).")
@click.option("--max-iterations", type=int, default=None, help="Max model round-trips.")
def chat(prompt: str, backend: Optional[str], model: Optional[str], max_iterations: Optional[int]) -> None:
    """Ask the agent something from the terminal."""
    from ..agent.chat import ChatAgentError, build_chat_agent

    settings = get_settings()
    if backend:
        settings.approval_backend = backend
    if model:
        settings.openai_model = model
    if max_iterations:
        settings.max_iterations = max_iterations

    try:
        agent = build_chat_agent(settings)
        console.print(f"[dim]Approvals via {agent.registry.gate.backend.name}[/dim]")
        result = agent.run(prompt)
    except (ChatAgentError, ApprovalError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    console.rule()
    console.print(result.content)
    console.print(
        f"\n[dim]{result.tool_calls} tool call(s), {result.iterations} iteration(s)[/dim]"
    )


@cli.command()
@click.option("--port", default=8000, show_default=True, help="Port for the Chainlit UI.")
@click.option("--headless", is_flag=True, help="Do not open a browser.")
def ui(port: int, headless: bool) -> None:
    """Start the Chainlit chat UI (chainlit run app.py)."""
    command = ["chainlit", "run", str(APP_PATH), "--port", str(port)]
    if headless:
        command.append("--headless")

    console.print(f"[bold green]Starting Chainlit on http://localhost:{port}[/bold green]")
    try:
        sys.exit(subprocess.call(command))
    except FileNotFoundError:
        console.print("[bold red]Error:[/bold red] chainlit executable not found")
        sys.exit(1)


server_option = click.option(
    "--server",
    default=None,
    help="Approval server URL (defaults to APPROVAL_SERVER_URL).",
)


@cli.command()
@server_option
def pending(server: Optional[str]) -> None:
    """List function calls awaiting approval."""
    from ..api.terminal_ui import ApprovalTerminalUI

    try:
        ApprovalTerminalUI(_reviewer(server), console=console).display_pending()
    except ApprovalError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@server_option
@click.option("--watch", is_flag=True, help="Keep watching for new requests.")
def review(server: Optional[str], watch: bool) -> None:
    """Review pending function calls interactively."""
    from ..api.terminal_ui import ApprovalTerminalUI

    terminal = ApprovalTerminalUI(_reviewer(server), console=console)
    try:
        if watch:
            terminal.run_interactive_mode()
        else:
            terminal.review_all_pending()
    except ApprovalError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@server_option
@click.option("--limit", default=10, show_default=True, help="Entries to show.")
def history(server: Optional[str], limit: int) -> None:
    """Show decided function calls."""
    from ..api.terminal_ui import ApprovalTerminalUI

    try:
        ApprovalTerminalUI(_reviewer(server), console=console).display_history(limit=limit)
    except ApprovalError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


@cli.command()
@server_option
def stats(server: Optional[str]) -> None:
    """Show approval statistics."""
    from ..api.terminal_ui import ApprovalTerminalUI

    try:
        ApprovalTerminalUI(_reviewer(server), console=console).display_stats()
    except ApprovalError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


def _decide(server: Optional[str], call_id: str, approved: bool, comment: Optional[str]) -> None:
    try:
        call = _reviewer(server).respond(call_id, approved, comment)
    except ApprovalError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    color = "green" if approved else "yellow"
    console.print(f"[{color}]{call.spec.fn} ({call.call_id}) {call.state.value}[/{color}]")


@cli.command()
@server_option
@click.argument("call_id")
@click.option("--comment", "-c", default=None, help="Note for the requester.")
def approve(server: Optional[str], call_id: str, comment: Optional[str]) -> None:
    """Approve a pending function call."""
    _decide(server, call_id, True, comment)


@cli.command()
@server_option
@click.argument("call_id")
@click.option("--comment", "-c", default=None, help="Reason given back to the model.")
def reject(server: Optional[str], call_id: str, comment: Optional[str]) -> None:
    """Reject a pending function call."""
    _decide(server, call_id, False, comment)


if __name__ == "__main__":
    cli()
