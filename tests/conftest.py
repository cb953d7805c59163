"""
测试公共设施：可编排结果的转发原语
"""

import asyncio
import os
import socket
import sys
from pathlib import Path
from typing import Dict, List

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tpot.exceptions import IdleTimeout


class FakePrimitive:
    """
    按脚本返回结果的转发原语

    脚本项:
        "idle"        等待空闲窗口到期后抛出 IdleTimeout
        "ok"          立即正常返回
        "block"       一直阻塞直到被取消
        Exception     立即抛出
    脚本耗尽后默认 "block"
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls: List[tuple] = []
        self.active: Dict[str, int] = {}
        self.max_active: Dict[str, int] = {}

    async def forward(self, user, host, address, idle):
        self.calls.append((user, host, address))
        self.active[address] = self.active.get(address, 0) + 1
        self.max_active[address] = max(self.max_active.get(address, 0), self.active[address])
        try:
            step = self.script.pop(0) if self.script else "block"
            if step == "idle":
                await idle.expired()
                raise IdleTimeout(idle.duration)
            if step == "ok":
                return None
            if step == "block":
                await asyncio.Event().wait()
            raise step
        finally:
            self.active[address] -= 1


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(step)


async def wait_for_snapshot(state, predicate, timeout: float = 2.0, step: float = 0.005):
    """轮询 TunnelState 快照直到满足条件，返回该快照"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        snap = await state.snapshot()
        if predicate(snap):
            return snap
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(step)


@pytest.fixture
def fake_tsh(tmp_path):
    """在 tmp_path 下生成可执行的 tsh 脚本，返回脚本路径"""

    def _make(body: str) -> str:
        path = tmp_path / "tsh"
        path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        os.chmod(path, 0o755)
        return str(path)

    return _make


def free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
    finally:
        sock.close()

