"""HTTP API 请求/响应模型"""

from typing import Any

from pydantic import BaseModel


class EngineStateResponse(BaseModel):
    """引擎生命周期状态"""

    status: str  # LifecycleStatus.value
    phase: str  # GatePhase.value
    headline: str
    message: str = ""
    attempt: int = 0
    changed_at: float = 0.0
    engine: dict[str, Any] | None = None


class RetryResponse(BaseModel):
    """retry 结果"""

    started: bool
    state: EngineStateResponse


class QueryRequest(BaseModel):
    """SQL 查询请求体"""

    sql: str


class QueryResponse(BaseModel):
    """SQL 查询结果"""

    columns: list[str]
    types: list[str]
    rows: list[list[Any]]
    row_count: int


class RegisterFileRequest(BaseModel):
    """注册本地文件为表"""

    path: str
    table_name: str | None = None


class TableResponse(BaseModel):
    """注册后的表信息"""

    table_name: str
    columns: list[str]
    types: list[str]
    row_count: int
