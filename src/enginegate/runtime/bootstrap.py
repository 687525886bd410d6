"""Bootstrap - 进程级默认 EngineRegistry

职责：
- 构造默认 Bootstrapper + EngineRegistry
- 提供进程内共享的 registry 访问入口

不负责：
- 触发引擎初始化（由 Gate / request_init 懒触发）
- Web 服务器生命周期（由 web.app 管理）

推荐显式构造 EngineRegistry 并注入；get_registry() 只服务于
没有注入点的入口（CLI、server）。
"""

import threading

from ..engine import Bootstrapper, EngineRegistry
from ..telemetry import get_logger

logger = get_logger(__name__)

# Global registry to track bootstrap state and prevent dual-construction
_current_registry: EngineRegistry | None = None
_registry_lock = threading.Lock()


def bootstrap(
    bootstrapper: Bootstrapper | None = None,
    timeout: float | None = None,
) -> EngineRegistry:
    """构造进程级 registry

    Args:
        bootstrapper: 自定义 Bootstrapper（默认使用真实 worker + 引擎）
        timeout: bootstrap 超时（秒），None 使用配置

    Returns:
        新建的 EngineRegistry

    Raises:
        RuntimeError: 如果已经调用过 bootstrap（防止双重构造）
    """
    global _current_registry

    with _registry_lock:
        if _current_registry is not None:
            raise RuntimeError(
                "bootstrap() has already been called. "
                "Use get_registry() to access the existing registry."
            )
        _current_registry = EngineRegistry(bootstrapper=bootstrapper, timeout=timeout)

    logger.info("[Bootstrap] Engine registry created")
    return _current_registry


def get_registry() -> EngineRegistry:
    """获取进程级 registry，不存在时按默认配置创建"""
    global _current_registry

    with _registry_lock:
        if _current_registry is None:
            _current_registry = EngineRegistry()
            logger.info("[Bootstrap] Engine registry created (default)")
        return _current_registry


def get_current_registry() -> EngineRegistry | None:
    """获取当前 registry

    如果 bootstrap() / get_registry() 还没调用，返回 None。
    """
    return _current_registry


def _reset_for_testing() -> None:
    """重置 bootstrap 状态（仅用于测试）"""
    global _current_registry
    _current_registry = None
