"""Gate - 引擎生命周期的展示层适配器

Gate 只是观察者：激活时无条件调用 registry.request_init()（幂等），
把 LifecycleState 映射为三种互斥视图：

- PENDING: UNINITIALIZED / INITIALIZING
- FAILED:  FAILED，原样展示错误信息
- READY:   READY，放行依赖引擎的内容

视图总是从 registry 的当前快照推导，不缓存。
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .engine.handle import EngineHandle
from .engine.registry import EngineRegistry, Unsubscribe
from .engine.types import LifecycleState, LifecycleStatus
from .telemetry import get_logger

logger = get_logger(__name__)

FAILED_HEADLINE = "Failed to initialize engine"
PENDING_HEADLINE = "Initializing data engine..."


class GatePhase(Enum):
    """Gate 可观察状态"""

    PENDING = "pending"
    FAILED = "failed"
    READY = "ready"


@dataclass(frozen=True)
class GateView:
    """Gate 渲染视图

    Attributes:
        phase: 当前阶段
        message: 失败信息（仅 FAILED，原样保留）
        handle: 引擎 handle（仅 READY）
    """

    phase: GatePhase
    message: str = ""
    handle: EngineHandle | None = None

    @classmethod
    def from_state(cls, state: LifecycleState) -> "GateView":
        if state.status.is_pending:
            return cls(phase=GatePhase.PENDING)
        if state.status is LifecycleStatus.FAILED:
            return cls(phase=GatePhase.FAILED, message=state.message)
        return cls(phase=GatePhase.READY, handle=state.handle)

    @property
    def is_ready(self) -> bool:
        return self.phase is GatePhase.READY

    @property
    def headline(self) -> str:
        """面向用户的一行文案"""
        if self.phase is GatePhase.FAILED:
            return f"{FAILED_HEADLINE}: {self.message}"
        if self.phase is GatePhase.PENDING:
            return PENDING_HEADLINE
        return "Engine ready"

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "headline": self.headline,
        }


# 回调类型
OnViewChangeCallback = Callable[[GateView], Any]


class Gate:
    """展示层 Gate

    使用示例:
        gate = Gate(registry, on_change=render)
        gate.activate()              # 触发初始化 + 订阅
        if gate.view.is_ready:
            await gate.view.handle.query("SELECT 1")
        gate.deactivate()
    """

    def __init__(
        self,
        registry: EngineRegistry,
        on_change: OnViewChangeCallback | None = None,
        name: str = "gate",
    ):
        self._registry = registry
        self._on_change = on_change
        self._name = name
        self._unsubscribe: Unsubscribe | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    @property
    def view(self) -> GateView:
        """当前视图（总是从 registry 快照推导）"""
        return GateView.from_state(self._registry.get_state())

    def activate(self) -> GateView:
        """激活：订阅变化并请求初始化

        Returns:
            激活后的当前视图
        """
        if self._unsubscribe is None:
            self._unsubscribe = self._registry.subscribe(self._on_state)
        try:
            self._registry.request_init()
        except Exception:
            self.deactivate()
            raise
        view = self.view
        logger.debug(f"[Gate:{self._name}] Activated ({view.phase.value})")
        return view

    def deactivate(self) -> None:
        """取消订阅"""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug(f"[Gate:{self._name}] Deactivated")

    async def wait_ready(self, timeout: float | None = None) -> GateView:
        """等待终态视图（READY 或 FAILED）

        Raises:
            asyncio.TimeoutError: timeout 内未到达终态
        """
        state = await self._registry.wait(timeout)
        return GateView.from_state(state)

    def _on_state(self, state: LifecycleState) -> Any:
        view = GateView.from_state(state)
        logger.debug(f"[Gate:{self._name}] → {view.phase.value}")
        if self._on_change is not None:
            return self._on_change(view)
        return None

    def __enter__(self) -> "Gate":
        self.activate()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.deactivate()
