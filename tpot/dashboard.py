"""
转发状态面板

使用 rich Live 持续渲染每条隧道的健康状态，Ctrl+C 退出
"""

import asyncio
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from tpot.forwarder.state import TunnelSnapshot, TunnelState


def format_status(snap: TunnelSnapshot) -> str:
    if snap.healthy:
        return "[green]● up[/green]"
    if snap.running:
        return "[yellow]● connecting[/yellow]"
    return "[red]● down[/red]"


def create_tunnels_panel(snapshots: List[TunnelSnapshot]) -> Panel:
    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("Port", justify="right")
    table.add_column("Target")
    table.add_column("Login")
    table.add_column("Status", justify="center")
    table.add_column("Restarts", justify="right")
    table.add_column("Error", overflow="fold")

    for snap in snapshots:
        login = f"{snap.user}@{snap.host}" if snap.host else "-"
        table.add_row(
            str(snap.listen_port),
            snap.target,
            login,
            format_status(snap),
            str(snap.restarts),
            snap.last_error or "",
        )

    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    healthy = sum(1 for s in snapshots if s.healthy)
    return Panel(
        table,
        title=f"[bold blue]tpot forwarding[/bold blue] {healthy}/{len(snapshots)} up | {now}",
        subtitle="[dim]Press [bold]Ctrl+C[/bold] to exit[/dim]",
        border_style="green" if healthy == len(snapshots) else "red",
    )


class Dashboard:
    def __init__(self, states: List[TunnelState], refresh: float = 1.0, console: Optional[Console] = None):
        self.states = states
        self.refresh = refresh
        self.console = console or Console()

    async def render(self) -> Panel:
        snapshots = [await s.snapshot() for s in self.states]
        return create_tunnels_panel(snapshots)

    async def run(self):
        with Live(await self.render(), console=self.console, refresh_per_second=4) as live:
            while True:
                await asyncio.sleep(self.refresh)
                live.update(await self.render())
