"""
隧道状态

每条转发规则对应一个 TunnelState，由 Worker、健康检查并发写入，
由 Dashboard / 状态 API 读取。所有写操作都持有同一把锁，读取方拿到的是一致的快照。
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from tpot.config import ForwardingNode


def _utc_now_iso() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class TunnelSnapshot:
    listen_port: int
    target: str
    user: str = ""
    host: str = ""
    healthy: bool = False
    last_error: str = ""
    running: bool = False
    restarts: int = 0
    retry_count: int = 0
    updated_at: Optional[str] = None


class TunnelState:
    def __init__(self, node: ForwardingNode):
        self.node = node
        self._lock = asyncio.Lock()
        self._snap = TunnelSnapshot(listen_port=node.listen_port, target=node.remote_address())

    async def snapshot(self) -> TunnelSnapshot:
        async with self._lock:
            return replace(self._snap)

    async def mark_healthy(self):
        async with self._lock:
            self._snap.healthy = True
            self._snap.last_error = ""
            self._snap.retry_count = 0
            self._snap.updated_at = _utc_now_iso()

    async def mark_unhealthy(self, error: str) -> bool:
        """返回标记前是否健康"""
        async with self._lock:
            was_healthy = self._snap.healthy
            self._snap.healthy = False
            self._snap.last_error = error
            self._snap.updated_at = _utc_now_iso()
            return was_healthy

    async def mark_started(self, user: str, host: str):
        async with self._lock:
            self._snap.running = True
            self._snap.user = user
            self._snap.host = host

    async def mark_stopped(self, error: Optional[str] = None):
        """Worker 退出；error 非空表示终止性错误"""
        async with self._lock:
            self._snap.running = False
            if error is not None:
                self._snap.healthy = False
                self._snap.last_error = error
                self._snap.retry_count += 1
            self._snap.updated_at = _utc_now_iso()

    async def mark_idle_restart(self):
        async with self._lock:
            self._snap.healthy = True
            self._snap.last_error = ""
            self._snap.retry_count = 0
            self._snap.restarts += 1
            self._snap.updated_at = _utc_now_iso()

    async def retry_count(self) -> int:
        async with self._lock:
            return self._snap.retry_count
