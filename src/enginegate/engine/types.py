"""Engine 模块数据类型定义

包含：
- LifecycleStatus: 生命周期状态枚举
- LifecycleState: 不可变生命周期快照
- InitializationFailed: 唯一的初始化错误类型
- EngineError: 引擎请求错误
- QueryResult / TableInfo: 引擎请求结果
- TypedDict definitions for dict structures
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypedDict

if TYPE_CHECKING:
    from .handle import EngineHandle


class LifecycleStatus(Enum):
    """引擎生命周期状态

    状态设计（4 个）：
    - UNINITIALIZED: 未尝试初始化，不持有资源
    - INITIALIZING: 恰好一个 bootstrap 正在进行
    - READY: 引擎可用（进程生命周期内不可撤销）
    - FAILED: 本次 bootstrap 失败，可显式 retry
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """是否为一次 bootstrap 的终态"""
        return self in {LifecycleStatus.READY, LifecycleStatus.FAILED}

    @property
    def is_pending(self) -> bool:
        """是否仍在等待引擎"""
        return self in {LifecycleStatus.UNINITIALIZED, LifecycleStatus.INITIALIZING}


class InitializationFailed(Exception):
    """引擎初始化失败

    所有 bootstrap 步骤的失败都归一化为此类型。调用方只关心
    "失败" + message；step 仅用于日志和指标。

    Attributes:
        message: 原始诊断信息（原样保留，直接展示给用户）
        step: 失败的 bootstrap 步骤名
    """

    def __init__(self, message: str, step: str = ""):
        super().__init__(message)
        self.message = message
        self.step = step

    def __repr__(self) -> str:
        return f"InitializationFailed({self.message!r}, step={self.step!r})"


class EngineError(Exception):
    """引擎请求失败（worker 内执行错误、worker 退出等）"""


class LifecycleStateDict(TypedDict):
    """LifecycleState.to_dict() return type.

    Used for the HTTP API and WebSocket broadcast.
    """

    status: str
    attempt: int
    message: str
    changed_at: float
    engine: dict[str, Any] | None


@dataclass(frozen=True)
class LifecycleState:
    """生命周期快照

    快照不可变；Registry 每次流转都会发布一个新对象，终态之后的
    所有读取都返回同一个对象（handle / error 引用稳定）。

    Attributes:
        status: 当前状态
        handle: 引擎 handle（仅 READY）
        error: 失败信息（仅 FAILED）
        attempt: bootstrap 尝试次数（首次尝试前为 0）
        changed_at: 进入该状态的时间戳
    """

    status: LifecycleStatus
    handle: "EngineHandle | None" = None
    error: InitializationFailed | None = None
    attempt: int = 0
    changed_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if (self.handle is not None) != (self.status is LifecycleStatus.READY):
            raise ValueError(f"handle must be set exactly when status is READY (got {self.status.value})")
        if (self.error is not None) != (self.status is LifecycleStatus.FAILED):
            raise ValueError(f"error must be set exactly when status is FAILED (got {self.status.value})")

    @classmethod
    def uninitialized(cls) -> "LifecycleState":
        return cls(status=LifecycleStatus.UNINITIALIZED)

    @classmethod
    def initializing(cls, attempt: int) -> "LifecycleState":
        return cls(status=LifecycleStatus.INITIALIZING, attempt=attempt)

    @classmethod
    def ready(cls, handle: "EngineHandle", attempt: int) -> "LifecycleState":
        return cls(status=LifecycleStatus.READY, handle=handle, attempt=attempt)

    @classmethod
    def failed(cls, error: InitializationFailed, attempt: int) -> "LifecycleState":
        return cls(status=LifecycleStatus.FAILED, error=error, attempt=attempt)

    @property
    def message(self) -> str:
        """失败信息（非 FAILED 时为空字符串）"""
        return self.error.message if self.error is not None else ""

    def to_dict(self) -> LifecycleStateDict:
        """转换为可序列化的字典"""
        return LifecycleStateDict(
            status=self.status.value,
            attempt=self.attempt,
            message=self.message,
            changed_at=self.changed_at,
            engine=self.handle.to_dict() if self.handle is not None else None,
        )


@dataclass
class QueryResult:
    """查询结果

    Attributes:
        columns: 列名
        types: 列类型（引擎类型名）
        rows: 行数据
    """

    columns: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": self.columns,
            "types": self.types,
            "rows": self.rows,
            "row_count": self.row_count,
        }


@dataclass
class TableInfo:
    """注册文件后生成的表信息"""

    table_name: str
    columns: list[str]
    types: list[str]
    row_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "columns": self.columns,
            "types": self.types,
            "row_count": self.row_count,
        }
