"""
数据模型定义

使用 Pydantic 定义状态 API 响应数据结构
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TunnelStatusResponse(BaseModel):
    """单条隧道状态"""
    listen_port: int = Field(..., description="本地监听端口")
    target: str = Field(..., description="远端地址")
    user: str = Field(default="", description="实际使用的登录用户")
    host: str = Field(default="", description="实际使用的目标主机")
    healthy: bool = Field(..., description="本地端口是否可用")
    last_error: str = Field(default="", description="最近一次错误，健康时为空")
    running: bool = Field(default=False, description="Worker 是否在运行")
    restarts: int = Field(default=0, description="空闲重启次数")
    retry_count: int = Field(default=0, description="连续失败次数")
    updated_at: Optional[str] = Field(None, description="最后更新时间 (UTC)")


class HealthResponse(BaseModel):
    """整体健康状态"""
    status: Literal["ok", "degraded"] = Field(..., description="全部隧道健康时为 ok")
    healthy: int = Field(..., description="健康隧道数")
    total: int = Field(..., description="隧道总数")


class TunnelListResponse(BaseModel):
    tunnels: List[TunnelStatusResponse] = Field(default_factory=list)
