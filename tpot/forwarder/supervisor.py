"""
端口转发 Supervisor

为每条规则启动一个 Worker，启动一个覆盖全部规则的健康检查任务，
然后把前台交给 Dashboard；Dashboard 退出后取消并等待所有任务。

Worker 的启动只发生在这里：健康检查只上报探测结果，
由 recover() 判断是否需要为已经退出的 Worker 重新拉起任务。
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from tpot.config import ForwardingConfig, ForwardingNode, StatusAPIConfig, check_unique_ports
from tpot.exceptions import ForwardingConfigError
from tpot.forwarder.health import HealthChecker
from tpot.forwarder.state import TunnelState
from tpot.forwarder.worker import Defaults, TunnelWorker

logger = logging.getLogger(__name__)

DashboardFactory = Callable[[List[TunnelState]], Awaitable]


class ForwardSupervisor:
    def __init__(
        self,
        nodes: List[ForwardingNode],
        primitive,
        defaults: Defaults,
        idle_timeout: float = 180.0,
        health_interval: float = 2.0,
        probe_timeout: float = 1.0,
        auto_recover: bool = True,
        max_backoff: float = 60.0,
        status_api: Optional[StatusAPIConfig] = None,
    ):
        check_unique_ports(nodes)
        self.nodes = list(nodes)
        self.primitive = primitive
        self.defaults = defaults
        self.idle_timeout = idle_timeout
        self.health_interval = health_interval
        self.probe_timeout = probe_timeout
        self.auto_recover = auto_recover
        self.max_backoff = max_backoff
        self.status_api = status_api

        self.states = [TunnelState(node) for node in self.nodes]
        self._workers: Dict[int, asyncio.Task] = {}
        self._launched_at: Dict[int, float] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._api_server = None
        self._api_task: Optional[asyncio.Task] = None
        self.status_api_error: Optional[str] = None

    @classmethod
    def from_config(cls, config: ForwardingConfig, primitive, defaults: Defaults,
                    status_api: Optional[StatusAPIConfig] = None) -> "ForwardSupervisor":
        return cls(
            config.nodes,
            primitive,
            defaults,
            idle_timeout=config.idle_timeout,
            health_interval=config.health_interval,
            probe_timeout=config.probe_timeout,
            auto_recover=config.recover,
            status_api=status_api,
        )

    @property
    def workers(self) -> Dict[int, asyncio.Task]:
        return dict(self._workers)

    @property
    def api_task(self) -> Optional[asyncio.Task]:
        return self._api_task

    @property
    def health_task(self) -> Optional[asyncio.Task]:
        return self._health_task

    def start(self):
        """启动所有 Worker 和健康检查（需在事件循环中调用）"""
        if not self.nodes:
            raise ForwardingConfigError("forwarding configuration is empty")

        for state in self.states:
            self._launch(state)

        checker = HealthChecker(
            self.states,
            recover=self.recover if self.auto_recover else None,
            interval=self.health_interval,
            probe_timeout=self.probe_timeout,
        )
        self._health_task = asyncio.create_task(checker.run(), name="tpot-health")

        if self.status_api and self.status_api.enabled:
            self._api_task = asyncio.create_task(self._run_api_server(), name="tpot-status-api")

        logger.info(f"forwarding started: {len(self.states)} tunnel(s), defaults {self.defaults.user}@{self.defaults.host}")

    async def run(self, dashboard: DashboardFactory):
        """
        启动并阻塞在 Dashboard 上

        Raises:
            ForwardingConfigError: 转发配置为空，此时不会启动任何任务
        """
        self.start()
        try:
            await dashboard(self.states)
        finally:
            await self.shutdown()

    def _launch(self, state: TunnelState):
        port = state.node.listen_port
        worker = TunnelWorker(state.node, state, self.primitive, self.defaults, idle_timeout=self.idle_timeout)
        self._workers[port] = asyncio.create_task(worker.run(), name=f"tpot-tunnel-{port}")
        self._launched_at[port] = time.monotonic()

    def _backoff(self, retry_count: int) -> float:
        return min(self.max_backoff, 2 ** min(6, retry_count))

    async def recover(self, state: TunnelState):
        """探测失败回调：只为已退出的 Worker 重新拉起任务，并按失败次数退避"""
        port = state.node.listen_port
        task = self._workers.get(port)
        if task is not None and not task.done():
            return

        backoff = self._backoff(await state.retry_count())
        since = time.monotonic() - self._launched_at.get(port, 0.0)
        if since < backoff:
            return

        logger.warning(f"tunnel {port} is down, restarting worker (retry in {backoff:g}s if it fails again)")
        self._launch(state)

    async def _run_api_server(self):
        import uvicorn

        from tpot.app import create_app

        server_config = uvicorn.Config(
            app=create_app(self.states),
            host=self.status_api.host,
            port=self.status_api.port,
            log_level="warning",
            access_log=False,
        )
        self._api_server = uvicorn.Server(server_config)
        try:
            await self._api_server.serve()
        except (SystemExit, OSError) as e:
            # uvicorn 绑定端口失败时会 sys.exit，状态 API 不可用不影响隧道
            self.status_api_error = f"status api failed to start on {self.status_api.host}:{self.status_api.port} ({e})"
            logger.error(self.status_api_error)

    async def shutdown(self):
        tasks = list(self._workers.values())
        if self._health_task is not None:
            tasks.append(self._health_task)
        for task in tasks:
            task.cancel()

        if self._api_server is not None:
            self._api_server.should_exit = True
        if self._api_task is not None:
            tasks.append(self._api_task)

        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("forwarding stopped")
