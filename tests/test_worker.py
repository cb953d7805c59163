"""
单元测试：Tunnel Worker

测试覆盖：
- 空闲窗口到期后重启，状态恢复健康
- 终止性错误：记录错误并退出，不再调用转发原语
- user / host 默认值与规则覆盖
"""

import asyncio

import pytest

from conftest import FakePrimitive, wait_until
from tpot.config import ForwardingNode
from tpot.exceptions import ForwardError
from tpot.forwarder import Defaults, TunnelState, TunnelWorker, resolve_target


DEFAULTS = Defaults(user="root", host="node-1")


class TestResolveTarget:
    """默认值解析测试"""

    def test_empty_fields_use_defaults(self):
        node = ForwardingNode(listen_port=8080)
        assert resolve_target(node, DEFAULTS) == ("root", "node-1")

    def test_node_values_take_precedence(self):
        node = ForwardingNode(listen_port=8080, host="db-1", user_login="admin")
        assert resolve_target(node, DEFAULTS) == ("admin", "db-1")

    def test_resolution_does_not_mutate_node(self):
        node = ForwardingNode(listen_port=8080)
        resolve_target(node, DEFAULTS)
        assert node.host == ""
        assert node.user_login == ""


class TestTunnelWorker:
    """Worker 重启循环测试"""

    def test_idle_expiry_restarts_with_same_arguments(self):
        """测试：空闲到期后以相同参数重启，状态为健康"""

        async def scenario():
            node = ForwardingNode(listen_port=8080)
            state = TunnelState(node)
            await state.mark_unhealthy("dial tcp localhost:8080: connection refused")
            primitive = FakePrimitive(["idle", "idle", "idle"])
            worker = TunnelWorker(node, state, primitive, DEFAULTS, idle_timeout=0.01)

            task = asyncio.create_task(worker.run())
            await wait_until(lambda: len(primitive.calls) == 4)
            snap = await state.snapshot()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return primitive, snap, await state.snapshot()

        primitive, snap, final = asyncio.run(scenario())

        assert primitive.calls == [("root", "node-1", "8080:localhost:8080")] * 4
        assert snap.healthy is True
        assert snap.last_error == ""
        assert snap.restarts == 3
        assert snap.running is True
        assert final.running is False

    def test_terminal_error_stops_worker(self):
        """测试：非空闲错误立即标记不健康，Worker 退出且不再调用原语"""

        async def scenario():
            node = ForwardingNode(listen_port=8080)
            state = TunnelState(node)
            primitive = FakePrimitive([ForwardError("connection refused")])
            worker = TunnelWorker(node, state, primitive, DEFAULTS, idle_timeout=0.01)
            await asyncio.wait_for(worker.run(), timeout=1)
            await asyncio.sleep(0.05)
            return primitive, await state.snapshot()

        primitive, snap = asyncio.run(scenario())

        assert len(primitive.calls) == 1
        assert snap.healthy is False
        assert snap.last_error == "connection refused"
        assert snap.running is False
        assert snap.retry_count == 1

    def test_error_after_idle_restarts(self):
        """测试：多次空闲重启之后的错误同样终止 Worker"""

        async def scenario():
            node = ForwardingNode(listen_port=9000, host="db-1", user_login="admin")
            state = TunnelState(node)
            primitive = FakePrimitive(["idle", "idle", ForwardError("access denied")])
            worker = TunnelWorker(node, state, primitive, DEFAULTS, idle_timeout=0.01)
            await asyncio.wait_for(worker.run(), timeout=1)
            return primitive, await state.snapshot()

        primitive, snap = asyncio.run(scenario())

        assert primitive.calls == [("admin", "db-1", "9000:localhost:9000")] * 3
        assert snap.restarts == 2
        assert snap.healthy is False
        assert snap.last_error == "access denied"

    def test_os_error_is_terminal(self):
        async def scenario():
            node = ForwardingNode(listen_port=8080)
            state = TunnelState(node)
            primitive = FakePrimitive([OSError("Too many open files")])
            worker = TunnelWorker(node, state, primitive, DEFAULTS)
            await asyncio.wait_for(worker.run(), timeout=1)
            return await state.snapshot()

        snap = asyncio.run(scenario())
        assert snap.healthy is False
        assert snap.last_error == "Too many open files"

    def test_clean_exit_is_treated_as_healthy(self):
        """测试：未带空闲标记的正常结束视为健康并重启"""

        async def scenario():
            node = ForwardingNode(listen_port=8080)
            state = TunnelState(node)
            primitive = FakePrimitive(["ok"])
            worker = TunnelWorker(node, state, primitive, DEFAULTS)
            task = asyncio.create_task(worker.run())
            await wait_until(lambda: len(primitive.calls) == 2)
            snap = await state.snapshot()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return snap

        snap = asyncio.run(scenario())
        assert snap.healthy is True
        assert snap.restarts == 0
