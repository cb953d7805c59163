"""
FastAPI 状态接口

在端口转发模式下（可选）提供隧道状态查询，数据来源与 Dashboard 相同
"""

from dataclasses import asdict
from typing import List

from fastapi import FastAPI, HTTPException

from tpot import __version__
from tpot.forwarder.state import TunnelState
from tpot.models import HealthResponse, TunnelListResponse, TunnelStatusResponse


def create_app(states: List[TunnelState]) -> FastAPI:
    app = FastAPI(
        title="tpot",
        version=__version__,
        description="tsh 端口转发状态"
    )

    async def _collect() -> List[TunnelStatusResponse]:
        return [TunnelStatusResponse(**asdict(await s.snapshot())) for s in states]

    @app.get("/v1/health", response_model=HealthResponse)
    async def get_health():
        tunnels = await _collect()
        healthy = sum(1 for t in tunnels if t.healthy)
        return HealthResponse(
            status="ok" if healthy == len(tunnels) else "degraded",
            healthy=healthy,
            total=len(tunnels),
        )

    @app.get("/v1/tunnels", response_model=TunnelListResponse)
    async def list_tunnels():
        return TunnelListResponse(tunnels=await _collect())

    @app.get("/v1/tunnels/{port}", response_model=TunnelStatusResponse)
    async def get_tunnel(port: int):
        for state in states:
            if state.node.listen_port == port:
                return TunnelStatusResponse(**asdict(await state.snapshot()))
        raise HTTPException(status_code=404, detail=f"tunnel {port} not found")

    return app
