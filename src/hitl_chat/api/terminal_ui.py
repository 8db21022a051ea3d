"""
Terminal UI for reviewing function calls awaiting approval.

Works with anything offering list_pending / respond / get_history /
get_stats: the in-process ApprovalManager or an HttpApprovalBackend
pointed at the approval server.
"""

import logging
import time
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from ..approvals.manager import ApprovalError
from ..approvals.models import ApprovalStatus, FunctionCall, RiskLevel

logger = logging.getLogger(__name__)


class ApprovalTerminalUI:
    """
    Terminal UI for approval requests.

    Displays pending function calls and allows interactive approval/rejection.
    """

    RISK_COLORS = {
        RiskLevel.LOW: "green",
        RiskLevel.MEDIUM: "yellow",
        RiskLevel.HIGH: "orange1",
        RiskLevel.CRITICAL: "red",
    }

    STATUS_COLORS = {
        ApprovalStatus.APPROVED: "green",
        ApprovalStatus.REJECTED: "red",
        ApprovalStatus.TIMEOUT: "yellow",
        ApprovalStatus.PENDING: "cyan",
    }

    def __init__(self, reviewer: Any, console: Optional[Console] = None):
        """
        Initialize terminal UI.

        Args:
            reviewer: ApprovalManager or HttpApprovalBackend
            console: Rich console (new one if None)
        """
        self.reviewer = reviewer
        self.console = console or Console()

    def _risk_color(self, risk_level: RiskLevel) -> str:
        return self.RISK_COLORS.get(risk_level, "white")

    def format_call_panel(self, call: FunctionCall) -> Panel:
        """Format a function call as a rich panel."""
        risk_color = self._risk_color(call.spec.risk_level)
        requested = call.status.requested_at if call.status else None

        content = f"""[bold]Function:[/bold] {call.spec.fn}
[bold]Risk Level:[/bold] [{risk_color}]{call.spec.risk_level.value.upper()}[/{risk_color}]
[bold]Run:[/bold] {call.run_id or 'N/A'}
[bold]Requested:[/bold] {requested.strftime('%Y-%m-%d %H:%M:%S') if requested else 'N/A'}"""

        if call.spec.description:
            content += f"\n[bold]Description:[/bold] {call.spec.description}"

        if call.spec.kwargs:
            kwargs_str = "\n".join(f"  • {k}: {v}" for k, v in call.spec.kwargs.items())
            content += f"\n\n[bold]Arguments:[/bold]\n{kwargs_str}"

        return Panel(
            content,
            title="[bold]Approval Request[/bold]",
            subtitle=f"[dim]ID: {call.call_id}[/dim]",
            border_style=risk_color,
            box=box.ROUNDED,
        )

    def display_pending(self) -> None:
        """Display all pending function calls in a table."""
        pending = self.reviewer.list_pending()

        if not pending:
            self.console.print("[yellow]No pending approval requests[/yellow]")
            return

        table = Table(title="Pending Approval Requests", box=box.ROUNDED)

        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Function", style="magenta")
        table.add_column("Risk", justify="center")
        table.add_column("Arguments", overflow="fold")
        table.add_column("Run", style="blue")
        table.add_column("Requested", style="green")

        for call in pending:
            risk_color = self._risk_color(call.spec.risk_level)
            args = ", ".join(f"{k}={v!r}" for k, v in call.spec.kwargs.items())
            table.add_row(
                call.call_id,
                call.spec.fn,
                f"[{risk_color}]{call.spec.risk_level.value.upper()}[/{risk_color}]",
                args[:60] + "..." if len(args) > 60 else args,
                call.run_id or "N/A",
                call.status.requested_at.strftime("%H:%M:%S") if call.status else "N/A",
            )

        self.console.print(table)

    def review_call(self, call: FunctionCall) -> bool:
        """
        Review a single function call interactively.

        Returns:
            True if approved, False if rejected
        """
        self.console.print(self.format_call_panel(call))

        approved = Confirm.ask(
            "[bold]Approve this call?[/bold]",
            default=False,
            console=self.console,
        )

        label = "[green]Approval note (optional)[/green]" if approved else "[red]Rejection reason (optional)[/red]"
        comment = Prompt.ask(label, default="", console=self.console) or None

        try:
            self.reviewer.respond(call.call_id, approved, comment)
        except ApprovalError as e:
            self.console.print(f"[red]✗ Could not record decision: {e}[/red]")
            return approved

        if approved:
            self.console.print("[green]✓ Call approved[/green]")
        else:
            self.console.print("[yellow]✗ Call rejected[/yellow]")

        return approved

    def review_all_pending(self) -> dict:
        """
        Review all pending function calls interactively.

        Returns:
            Summary counts
        """
        pending = self.reviewer.list_pending()

        if not pending:
            self.console.print("[yellow]No pending approval requests[/yellow]")
            return {"approved": 0, "rejected": 0, "total": 0}

        approved_count = 0
        self.console.print(f"[bold]Found {len(pending)} pending request(s)[/bold]\n")

        for i, call in enumerate(pending, 1):
            self.console.print(f"[dim]Request {i} of {len(pending)}[/dim]")
            if self.review_call(call):
                approved_count += 1

        summary = {
            "approved": approved_count,
            "rejected": len(pending) - approved_count,
            "total": len(pending),
        }

        self.console.print("\n[bold green]Review Complete[/bold green]")
        self.console.print(f"Approved: {summary['approved']}")
        self.console.print(f"Rejected: {summary['rejected']}")

        return summary

    def display_history(self, limit: int = 10) -> None:
        """Display decided function calls."""
        history = self.reviewer.get_history(limit=limit)

        if not history:
            self.console.print("[yellow]No approval history[/yellow]")
            return

        table = Table(title=f"Approval History (Last {limit})", box=box.ROUNDED)

        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Function", style="magenta")
        table.add_column("Status", justify="center")
        table.add_column("Comment", overflow="fold")
        table.add_column("Decided", style="green")

        for call in history:
            color = self.STATUS_COLORS.get(call.state, "white")
            comment = call.status.comment if call.status else None
            responded = call.status.responded_at if call.status else None
            table.add_row(
                call.call_id,
                call.spec.fn,
                f"[{color}]{call.state.value.upper()}[/{color}]",
                comment or "",
                responded.strftime("%H:%M:%S") if responded else "N/A",
            )

        self.console.print(table)

    def display_stats(self) -> None:
        """Display approval statistics."""
        stats = self.reviewer.get_stats()

        content = f"""[bold]Pending:[/bold] {stats['pending']}
[bold]Total History:[/bold] {stats['total_history']}
[bold]Approval Rate:[/bold] {stats['approval_rate']:.1%}

[bold]By Status:[/bold]"""

        for status, count in stats["by_status"].items():
            content += f"\n  • {status}: {count}"

        content += "\n\n[bold]By Risk Level:[/bold]"
        for risk, count in stats["by_risk_level"].items():
            content += f"\n  • {risk}: {count}"

        self.console.print(
            Panel(
                content,
                title="[bold]Approval Statistics[/bold]",
                border_style="blue",
                box=box.ROUNDED,
            )
        )

    def run_interactive_mode(self, interval: float = 2.0) -> None:
        """
        Watch for pending calls and prompt for review until interrupted.

        Args:
            interval: Seconds between checks
        """
        self.console.print("[bold green]HITL Approval Terminal[/bold green]")
        self.console.print("[dim]Monitoring for approval requests...[/dim]\n")

        try:
            while True:
                if self.reviewer.list_pending():
                    self.review_all_pending()
                time.sleep(interval)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]Exiting interactive mode[/yellow]")
