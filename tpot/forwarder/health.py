"""
健康检查

每个周期并发探测所有隧道的本地监听端口，更新 TunnelState；
探测失败时交给 Supervisor 决定是否重新拉起转发。
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from tpot.forwarder.state import TunnelState

logger = logging.getLogger(__name__)

RecoverCallback = Callable[[TunnelState], Awaitable[None]]


async def probe_port(port: int, timeout: float = 1.0, host: str = "localhost") -> Optional[str]:
    """
    TCP 探测本地端口

    Returns:
        探测成功返回 None，失败返回错误描述
    """
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except asyncio.TimeoutError:
        return f"dial tcp {host}:{port}: i/o timeout"
    except OSError as e:
        return f"dial tcp {host}:{port}: {e.strerror or e}"

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return None


class HealthChecker:
    def __init__(self, states: List[TunnelState], recover: Optional[RecoverCallback] = None,
                 interval: float = 2.0, probe_timeout: float = 1.0):
        self.states = states
        self.recover = recover
        self.interval = interval
        self.probe_timeout = probe_timeout

    async def check_once(self):
        await asyncio.gather(*(self._check(state) for state in self.states))

    async def _check(self, state: TunnelState):
        port = state.node.listen_port
        error = await probe_port(port, timeout=self.probe_timeout)
        if error is None:
            await state.mark_healthy()
            return

        if await state.mark_unhealthy(error):
            logger.warning(f"tunnel {port} went down: {error}")
        else:
            logger.debug(f"tunnel {port} still down: {error}")
        if self.recover is not None:
            try:
                await self.recover(state)
            except Exception as e:
                logger.error(f"tunnel {port} recovery failed: {e}", exc_info=True)

    async def run(self):
        while True:
            started = time.monotonic()
            await self.check_once()
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))
