"""
配置管理模块

从 YAML 文件加载配置，支持环境变量覆盖配置文件路径
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from tpot.exceptions import EnvNotFoundError, ForwardingConfigError


DEFAULT_CONFIG_PATH = "~/.config/tpot/config.yaml"


class ForwardingNode(BaseModel):
    """单条端口转发规则"""

    model_config = ConfigDict(frozen=True)

    listen_port: int = Field(..., ge=1, le=65535, description="本地监听端口")
    host: str = Field(default="", description="目标主机，为空时使用默认主机")
    user_login: str = Field(default="", description="登录用户，为空时使用默认用户")
    remote_port: Optional[int] = Field(default=None, ge=1, le=65535, description="远端端口，默认与监听端口相同")

    def remote_address(self) -> str:
        return f"localhost:{self.remote_port or self.listen_port}"

    def address(self) -> str:
        """tsh ssh -L 使用的转发地址"""
        return f"{self.listen_port}:{self.remote_address()}"


class ForwardingConfig(BaseModel):
    """端口转发配置"""

    nodes: List[ForwardingNode] = Field(default_factory=list, description="转发规则列表")
    idle_timeout: float = Field(default=180.0, gt=0, description="空闲窗口（秒），到期后重启转发")
    health_interval: float = Field(default=2.0, gt=0, description="健康检查周期（秒）")
    probe_timeout: float = Field(default=1.0, gt=0, description="TCP 探测超时（秒）")
    recover: bool = Field(default=True, description="探测失败时是否重新拉起已退出的转发")

    @field_validator("nodes")
    @classmethod
    def _unique_listen_ports(cls, nodes: List[ForwardingNode]) -> List[ForwardingNode]:
        check_unique_ports(nodes)
        return nodes


class ProxyConfig(BaseModel):
    """Teleport 代理（环境）配置"""

    env: str = Field(..., description="环境名，如 staging / prod")
    address: str = Field(..., description="Teleport 代理地址，如 teleport.example.com:443")
    user_name: str = Field(default="", description="Teleport 用户名")
    auth_connector: Optional[str] = Field(default=None, description="认证连接器（github / okta 等）")
    nodes: List[str] = Field(default_factory=list, description="可登录的主机列表")
    user_logins: List[str] = Field(default_factory=list, description="可用的登录用户")
    forwarding: ForwardingConfig = Field(default_factory=ForwardingConfig)


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class StatusAPIConfig(BaseModel):
    """状态 API 配置"""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9190


class AppConfig(BaseModel):
    """应用配置（完整配置）"""

    proxies: List[ProxyConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    status_api: StatusAPIConfig = Field(default_factory=StatusAPIConfig)

    def find_proxy(self, env: str) -> ProxyConfig:
        for proxy in self.proxies:
            if proxy.env == env:
                return proxy
        raise EnvNotFoundError(env)

    def dump(self) -> str:
        """以 YAML 形式输出配置"""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def check_unique_ports(nodes: List[ForwardingNode]):
    """
    校验监听端口不重复

    Raises:
        ForwardingConfigError: 存在重复端口时抛出
    """
    seen = set()
    for node in nodes:
        if node.listen_port in seen:
            raise ForwardingConfigError(f"duplicate listen port {node.listen_port} in forwarding configuration")
        seen.add(node.listen_port)


def load_config(config_path: str = None) -> AppConfig:
    """
    加载配置文件

    Args:
        config_path: 配置文件路径，默认读取 TPOT_CONFIG 或 ~/.config/tpot/config.yaml

    Returns:
        AppConfig 实例
    """
    if config_path is None:
        config_path = os.getenv("TPOT_CONFIG", DEFAULT_CONFIG_PATH)

    config_file = Path(config_path).expanduser()
    if not config_file.exists():
        raise FileNotFoundError(f"config file not found: {config_file}")

    with open(config_file, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    return AppConfig(**config_data)


# 全局配置实例（延迟加载）
_config: AppConfig = None


def get_config() -> AppConfig:
    """获取全局配置实例"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    global _config
    _config = None
