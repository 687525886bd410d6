"""Engine worker - 隔离的引擎执行进程

引擎运行在独立的 multiprocessing 子进程里，父进程通过双工 Pipe
发送请求，调用方的事件循环不会被引擎计算阻塞。

协议（dict 消息）：
- 子进程启动后发送 {"ok": True, "op": "hello", "pid": ...}
- 请求 {"op": "instantiate" | "query" | "register_file" | "close", ...}
- 响应 {"ok": True, ...} 或 {"ok": False, "error": "..."}
"""

import importlib
import json
import multiprocessing
import os
import threading
from multiprocessing.connection import Connection
from typing import Any

from .. import config
from ..telemetry import get_logger, metrics
from .bundles import BundleDescriptor
from .types import EngineError

logger = get_logger(__name__)

# register_file 支持的扩展名 -> 引擎读取函数
FILE_READERS = {
    "csv": "read_csv_auto",
    "parquet": "read_parquet",
    "json": "read_json_auto",
    "jsonl": "read_json_auto",
}


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class _EngineSession:
    """子进程内的引擎会话（只在 worker 进程中使用）"""

    def __init__(self, staging_path: str):
        self._staging_path = staging_path
        self._conn: Any = None

    def instantiate(self) -> dict:
        with open(self._staging_path, encoding="utf-8") as f:
            manifest = json.load(f)

        bundle = manifest["bundle"]
        module = importlib.import_module(bundle["module"])
        self._conn = module.connect(
            database=manifest.get("database", config.ENGINE_DATABASE),
            config={"threads": max(1, int(bundle.get("threads", 1)))},
        )
        return {"version": getattr(module, "__version__", "")}

    def query(self, sql: str) -> dict:
        relation = self._require_conn().sql(sql)
        if relation is None:
            # DDL/DML 没有结果集
            return {"columns": [], "types": [], "rows": []}
        return {
            "columns": list(relation.columns),
            "types": [str(t) for t in relation.types],
            "rows": [list(row) for row in relation.fetchall()],
        }

    def register_file(self, path: str, table_name: str) -> dict:
        ext = os.path.splitext(path)[1].lstrip(".").lower()
        reader = FILE_READERS.get(ext)
        if reader is None:
            raise ValueError(f"Unsupported file type: .{ext}")

        conn = self._require_conn()
        table = _quote_identifier(table_name)
        conn.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM {reader}({_quote_literal(path)})")
        row_count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        schema = conn.execute(f"DESCRIBE {table}").fetchall()
        return {
            "table_name": table_name,
            "columns": [str(row[0]) for row in schema],
            "types": [str(row[1]) for row in schema],
            "row_count": int(row_count),
        }

    def close(self) -> dict:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        return {}

    def _require_conn(self) -> Any:
        if self._conn is None:
            raise RuntimeError("engine is not instantiated")
        return self._conn


def _worker_main(conn: Connection, staging_path: str) -> None:
    """worker 进程入口

    串行处理请求：引擎在 worker 内只有一个逻辑执行者。
    """
    session = _EngineSession(staging_path)
    handlers = {
        "instantiate": session.instantiate,
        "query": session.query,
        "register_file": session.register_file,
        "close": session.close,
    }
    conn.send({"ok": True, "op": "hello", "pid": os.getpid()})

    while True:
        try:
            request = conn.recv()
        except EOFError:
            # 父进程已关闭管道
            break

        op = request.pop("op", "")
        handler = handlers.get(op)
        try:
            if handler is None:
                raise ValueError(f"unknown engine operation: {op}")
            reply = {"ok": True, **handler(**request)}
        except Exception as e:
            reply = {"ok": False, "error": str(e) or type(e).__name__}
        conn.send(reply)

        if op == "close":
            break

    session.close()
    conn.close()


class EngineWorker:
    """父进程侧的 worker 句柄

    请求通过锁串行化：同一时刻管道上只有一个在途请求。
    """

    def __init__(self, process: Any, conn: Connection, bundle: BundleDescriptor):
        self._process = process
        self._conn = conn
        self._bundle = bundle
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def bundle(self) -> BundleDescriptor:
        return self._bundle

    @property
    def is_alive(self) -> bool:
        return not self._closed and self._process.is_alive()

    def request(self, op: str, timeout: float | None = None, **payload: Any) -> dict:
        """发送请求并阻塞等待响应

        Args:
            op: 操作名
            timeout: 超时（秒），None 使用 config.WORKER_REQUEST_TIMEOUT_SECONDS
            **payload: 操作参数

        Returns:
            响应字典（不含 ok 字段）

        Raises:
            EngineError: worker 返回错误、超时或已退出
        """
        if timeout is None:
            timeout = config.WORKER_REQUEST_TIMEOUT_SECONDS or None

        with self._lock:
            if self._closed:
                raise EngineError("engine worker is closed")
            try:
                self._conn.send({"op": op, **payload})
                if timeout is not None and not self._conn.poll(timeout):
                    # 迟到的响应会让管道错位，超时后 worker 不再可用
                    self._closed = True
                    raise EngineError(f"engine worker did not answer '{op}' within {timeout:g}s")
                reply = self._conn.recv()
            except (EOFError, OSError) as e:
                raise EngineError(f"engine worker exited unexpectedly ({e or type(e).__name__})") from e

        if not reply.pop("ok", False):
            raise EngineError(reply.get("error", "unknown engine error"))
        return reply

    def instantiate(self) -> str:
        """在 worker 内实例化引擎，返回引擎版本"""
        reply = self.request("instantiate")
        return reply.get("version", "")

    def close(self) -> None:
        """优雅关闭 worker，超时后强制终止"""
        if not self._closed:
            try:
                self.request("close", timeout=config.WORKER_JOIN_TIMEOUT_SECONDS)
            except EngineError as e:
                logger.debug(f"[Worker] Close request failed: {e}")
            self._closed = True
            self._process.join(config.WORKER_JOIN_TIMEOUT_SECONDS)
        self.terminate()

    def terminate(self) -> None:
        """强制终止 worker"""
        self._closed = True
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(config.WORKER_JOIN_TIMEOUT_SECONDS)
            logger.info(f"[Worker] Terminated pid={self.pid}")
        self._conn.close()


def spawn_worker(bundle: BundleDescriptor, staging_path: str) -> EngineWorker:
    """启动隔离的 worker 进程（Bootstrapper 默认能力）

    Args:
        bundle: 选中的 bundle
        staging_path: handoff 临时文件路径（worker 实例化时读取）

    Returns:
        已完成握手的 EngineWorker

    Raises:
        RuntimeError: worker 未在 WORKER_READY_TIMEOUT_SECONDS 内握手
    """
    ctx = multiprocessing.get_context(bundle.start_method)
    parent_conn, child_conn = ctx.Pipe(duplex=True)
    process = ctx.Process(
        target=_worker_main,
        args=(child_conn, staging_path),
        name=f"enginegate:{bundle.name}",
        daemon=True,
    )
    process.start()
    child_conn.close()

    worker = EngineWorker(process, parent_conn, bundle)
    try:
        if not parent_conn.poll(config.WORKER_READY_TIMEOUT_SECONDS):
            raise RuntimeError(
                f"engine worker did not start within {config.WORKER_READY_TIMEOUT_SECONDS:g}s"
            )
        hello = parent_conn.recv()
    except EOFError as e:
        worker.terminate()
        raise RuntimeError(f"engine worker exited during startup (exitcode={process.exitcode})") from e
    except Exception:
        worker.terminate()
        raise

    metrics.inc("worker.spawned", {"bundle": bundle.name})
    logger.info(f"[Worker] Spawned {bundle.name} pid={hello.get('pid')}")
    return worker
