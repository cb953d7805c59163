"""
tpot - Teleport tsh 登录与端口转发助手
"""

__version__ = "1.0.0"
