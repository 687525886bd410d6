"""Engine 模块

提供引擎访问层的核心组件：
- types: 生命周期快照、错误类型、查询结果
- bundles: 平台 bundle 解析
- worker: 隔离的引擎进程
- handle: EngineHandle
- bootstrapper: 初始化流程
- registry: EngineRegistry（生命周期唯一事实来源）
"""

from .bootstrapper import Bootstrapper, staged_manifest
from .bundles import BundleDescriptor, PlatformCapabilities, resolve_bundle, select_bundle
from .handle import EngineHandle, sanitize_table_name
from .registry import EngineRegistry
from .types import (
    EngineError,
    InitializationFailed,
    LifecycleState,
    LifecycleStatus,
    QueryResult,
    TableInfo,
)
from .worker import EngineWorker, spawn_worker

__all__ = [
    # Types
    "LifecycleStatus",
    "LifecycleState",
    "InitializationFailed",
    "EngineError",
    "QueryResult",
    "TableInfo",
    # Bundles
    "BundleDescriptor",
    "PlatformCapabilities",
    "select_bundle",
    "resolve_bundle",
    # Worker
    "EngineWorker",
    "spawn_worker",
    # Handle
    "EngineHandle",
    "sanitize_table_name",
    # Bootstrap
    "Bootstrapper",
    "staged_manifest",
    # Registry
    "EngineRegistry",
]
