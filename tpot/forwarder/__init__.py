"""Port forwarding supervisor (tsh local port forwards)."""

from .idle import IdleWindow
from .state import TunnelSnapshot, TunnelState
from .supervisor import ForwardSupervisor
from .worker import Defaults, TunnelWorker, resolve_target

__all__ = [
    "Defaults",
    "ForwardSupervisor",
    "IdleWindow",
    "TunnelSnapshot",
    "TunnelState",
    "TunnelWorker",
    "resolve_target",
]
