"""enginegate - 共享的懒初始化分析引擎访问层

进程内只 bootstrap 一次引擎（DuckDB，运行在独立 worker 进程），
任意数量互不协调的消费方通过 Gate 触发并观察同一个生命周期。
"""

from .engine import (
    Bootstrapper,
    EngineError,
    EngineHandle,
    EngineRegistry,
    InitializationFailed,
    LifecycleState,
    LifecycleStatus,
)
from .gate import Gate, GatePhase, GateView

__version__ = "0.1.0"

__all__ = [
    "Bootstrapper",
    "EngineError",
    "EngineHandle",
    "EngineRegistry",
    "InitializationFailed",
    "LifecycleState",
    "LifecycleStatus",
    "Gate",
    "GatePhase",
    "GateView",
]
