"""
单元测试：状态面板渲染
"""

import asyncio

from rich.console import Console

from tpot.config import ForwardingNode
from tpot.dashboard import Dashboard
from tpot.forwarder import TunnelState


def test_render_shows_health_and_errors():
    up = TunnelState(ForwardingNode(listen_port=8080))
    down = TunnelState(ForwardingNode(listen_port=5432))
    console = Console(record=True, width=160)

    async def scenario():
        await up.mark_started("root", "node-1")
        await up.mark_idle_restart()
        await down.mark_unhealthy("dial tcp localhost:5432: connection refused")
        return await Dashboard([up, down], console=console).render()

    console.print(asyncio.run(scenario()))
    text = console.export_text()

    assert "1/2 up" in text
    assert "root@node-1" in text
    assert "up" in text
    assert "down" in text
    assert "connection refused" in text
