"""EngineHandle - 可用引擎的能力对象

Registry 独占持有，只读共享给所有消费方。所有请求都提交给同一个
worker，由 worker 串行执行；多个调用方之间不保证 FIFO。
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Protocol

from .. import config
from ..telemetry import get_logger, metrics, truncate
from .bundles import BundleDescriptor
from .types import EngineError, QueryResult, TableInfo
from .worker import FILE_READERS

logger = get_logger(__name__)


class WorkerChannel(Protocol):
    """EngineHandle 依赖的 worker 接口"""

    @property
    def pid(self) -> int | None: ...

    def request(self, op: str, timeout: float | None = None, **payload: Any) -> dict: ...

    def close(self) -> None: ...


def sanitize_table_name(filename: str) -> str:
    """文件名 -> 表名（去扩展名，非法字符替换为下划线）"""
    stem = re.sub(r"\.[^.]+$", "", filename)
    return re.sub(r"[^a-zA-Z0-9_]", "_", stem)


class EngineHandle:
    """可用引擎实例

    Attributes:
        bundle: 使用的 bundle
        version: 引擎版本
    """

    def __init__(self, worker: WorkerChannel, bundle: BundleDescriptor, version: str = ""):
        self._worker = worker
        self._bundle = bundle
        self._version = version

    @property
    def bundle(self) -> BundleDescriptor:
        return self._bundle

    @property
    def version(self) -> str:
        return self._version

    @property
    def pid(self) -> int | None:
        return self._worker.pid

    async def query(self, sql: str) -> QueryResult:
        """执行 SQL

        Raises:
            EngineError: 引擎执行失败
        """
        logger.debug(f"[Engine] query: {truncate(sql, config.LOG_MAX_SQL_LEN)}")
        metrics.inc("engine.queries")
        reply = await asyncio.to_thread(self._worker.request, "query", sql=sql)
        return QueryResult(columns=reply["columns"], types=reply["types"], rows=reply["rows"])

    async def register_file(self, path: str | Path, table_name: str | None = None) -> TableInfo:
        """把本地文件注册为表（csv / parquet / json / jsonl）

        Args:
            path: 文件路径
            table_name: 表名，None 时由文件名推导

        Raises:
            EngineError: 扩展名不支持或引擎读取失败
        """
        path = Path(path)
        ext = path.suffix.lstrip(".").lower()
        if ext not in FILE_READERS:
            raise EngineError(f"Unsupported file type: .{ext}")

        table_name = table_name or sanitize_table_name(path.name)
        reply = await asyncio.to_thread(
            self._worker.request,
            "register_file",
            path=str(path.resolve()),
            table_name=table_name,
        )
        metrics.inc("engine.files_registered")
        logger.info(f"[Engine] Registered {path.name} as {table_name} ({reply['row_count']} rows)")
        return TableInfo(
            table_name=reply["table_name"],
            columns=reply["columns"],
            types=reply["types"],
            row_count=reply["row_count"],
        )

    def close(self) -> None:
        """关闭 worker（仅进程退出时调用）"""
        self._worker.close()

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundle": self._bundle.name,
            "start_method": self._bundle.start_method,
            "threads": self._bundle.threads,
            "version": self._version,
            "pid": self.pid,
        }

    def __repr__(self) -> str:
        return f"EngineHandle(bundle={self._bundle.name!r}, pid={self.pid})"
