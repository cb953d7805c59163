"""
Tunnel Worker

负责单条隧道的重启循环：每次以新的空闲窗口调用转发原语，
空闲到期视为正常并立即重启；其他错误记录到状态后退出，不再自动重试。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Tuple

from tpot.config import ForwardingNode
from tpot.exceptions import IdleTimeout
from tpot.forwarder.idle import IdleWindow
from tpot.forwarder.state import TunnelState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Defaults:
    """Supervisor 级默认值，规则未指定 user_login / host 时使用"""
    user: str
    host: str


def resolve_target(node: ForwardingNode, defaults: Defaults) -> Tuple[str, str]:
    """返回 (user, host)，规则自身的值优先"""
    return node.user_login or defaults.user, node.host or defaults.host


class TunnelWorker:
    def __init__(self, node: ForwardingNode, state: TunnelState, primitive, defaults: Defaults,
                 idle_timeout: float = 180.0):
        self.node = node
        self.state = state
        self.primitive = primitive
        self.defaults = defaults
        self.idle_timeout = idle_timeout

    async def run(self):
        """持续转发，直到出现终止性错误或任务被取消"""
        port = self.node.listen_port
        try:
            while True:
                user, host = resolve_target(self.node, self.defaults)
                await self.state.mark_started(user, host)

                idle = IdleWindow(self.idle_timeout)
                try:
                    await self.primitive.forward(user, host, self.node.address(), idle)
                except IdleTimeout:
                    await self.state.mark_idle_restart()
                    logger.debug(f"tunnel {port}: idle window expired, restarting")
                    continue
                except Exception as e:
                    error = str(e) or e.__class__.__name__
                    logger.warning(f"tunnel {port} failed: {error}")
                    await self.state.mark_stopped(error)
                    return

                # 未带空闲标记的正常结束，同样视为健康并重启
                await self.state.mark_healthy()
                logger.info(f"tunnel {port}: tsh exited cleanly, restarting")
        except asyncio.CancelledError:
            await self.state.mark_stopped()
            raise
