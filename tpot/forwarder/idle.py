"""
空闲窗口

Worker 每次调用 forward 时创建一个新的 IdleWindow，转发原语在窗口到期后
必须交还控制权（结束 tsh 进程并抛出 IdleTimeout），即使隧道本身仍然健康。
"""

import asyncio
import time


class IdleWindow:
    def __init__(self, duration: float):
        self.duration = duration
        self._deadline = time.monotonic() + duration

    def remaining(self) -> float:
        return max(0.0, self._deadline - time.monotonic())

    def is_expired(self) -> bool:
        return self.remaining() == 0.0

    async def expired(self):
        """阻塞直到窗口到期"""
        await asyncio.sleep(self.remaining())
