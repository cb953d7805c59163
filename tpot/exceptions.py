"""
异常定义
"""


class TpotError(Exception):
    """tpot 基础异常"""


class EnvNotFoundError(TpotError):
    """配置中不存在指定的环境"""

    def __init__(self, env: str):
        self.env = env
        super().__init__(f"env {env} not found")


class ForwardingConfigError(TpotError):
    """端口转发配置无效（为空或端口重复）"""


class SelectionError(TpotError):
    """主机 / 用户选择失败"""


class TshError(TpotError):
    """tsh 命令执行失败"""


class UnsupportedVersionError(TshError):
    """tsh 版本过低，不支持 tsh status 输出登录用户"""


class ForwardError(TpotError):
    """tsh 端口转发失败（认证失败、主机不可达等）"""


class IdleTimeout(ForwardError):
    """空闲窗口到期，转发被主动结束；不是故障"""

    def __init__(self, duration: float):
        self.duration = duration
        super().__init__(f"idle window of {duration:g}s expired")
