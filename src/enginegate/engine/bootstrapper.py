"""Bootstrapper - 引擎初始化流程

步骤：
1. resolve  - 按平台能力解析 bundle
2. stage    - 生成 handoff 临时文件（bundle manifest）
3. spawn    - 启动隔离的 worker 进程
4. instantiate - 在 worker 内实例化引擎
5. 无论成功失败，释放 handoff 临时资源
6. 返回 EngineHandle

任何一步失败都会中止后续步骤，并归一化为 InitializationFailed
（保留原始诊断信息）。各步骤能力通过构造参数注入，便于在没有
真实 worker 的情况下测试流程。
"""

import asyncio
import inspect
import json
import os
import tempfile
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import AbstractContextManager, ExitStack, contextmanager
from typing import Any

from .. import config
from ..telemetry import get_logger, metrics
from .bundles import BundleDescriptor, resolve_bundle
from .handle import EngineHandle
from .types import InitializationFailed
from .worker import spawn_worker

logger = get_logger(__name__)

# 能力类型（同步或异步均可）
ResolveBundle = Callable[[], Any]
StageHandoff = Callable[[BundleDescriptor], AbstractContextManager[str]]
SpawnContext = Callable[[BundleDescriptor, str], Any]
Instantiate = Callable[[Any, BundleDescriptor], Any]
HandleFactory = Callable[[Any, BundleDescriptor, str], EngineHandle]


@contextmanager
def staged_manifest(bundle: BundleDescriptor) -> Iterator[str]:
    """写出 bundle manifest 临时文件，退出时删除"""
    fd, path = tempfile.mkstemp(prefix=config.STAGING_PREFIX, suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"bundle": bundle.to_dict(), "database": config.ENGINE_DATABASE}, f)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        logger.debug(f"[Bootstrap] Released staging file {path}")


def instantiate_engine(worker: Any, bundle: BundleDescriptor) -> str:
    """在 worker 内实例化引擎（默认能力）"""
    return worker.instantiate()


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class Bootstrapper:
    """引擎初始化流程

    只负责一次完整的初始化尝试，不关心并发：互斥由 EngineRegistry 保证。
    """

    def __init__(
        self,
        resolve_bundle: ResolveBundle = resolve_bundle,
        stage_handoff: StageHandoff = staged_manifest,
        spawn_context: SpawnContext = spawn_worker,
        instantiate: Instantiate = instantiate_engine,
        handle_factory: HandleFactory = EngineHandle,
        executor: ThreadPoolExecutor | None = None,
    ):
        """初始化

        Args:
            resolve_bundle: () -> BundleDescriptor
            stage_handoff: bundle -> context manager，产出 handoff 资源路径
            spawn_context: (bundle, staging_path) -> worker
            instantiate: (worker, bundle) -> 引擎版本
            handle_factory: (worker, bundle, version) -> EngineHandle
            executor: 执行阻塞步骤的线程池（默认每次尝试新建一个单线程池，
                超时后被放弃的步骤不会阻塞下一次尝试）
        """
        self._resolve_bundle = resolve_bundle
        self._stage_handoff = stage_handoff
        self._spawn_context = spawn_context
        self._instantiate = instantiate
        self._handle_factory = handle_factory
        self._shared_executor = executor

    async def run(self) -> EngineHandle:
        """执行一次完整初始化

        Returns:
            EngineHandle

        Raises:
            InitializationFailed: 任一步骤失败
        """
        executor = self._shared_executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="enginegate-bootstrap"
        )
        try:
            return await self._run_steps(executor)
        finally:
            if executor is not self._shared_executor:
                # 不等待被放弃的步骤，线程结束后自行退出
                executor.shutdown(wait=False)

    async def _run_steps(self, executor: ThreadPoolExecutor) -> EngineHandle:
        bundle = await self._step("resolve", executor, self._resolve_bundle)
        logger.info(f"[Bootstrap] Bundle resolved: {bundle.name}")

        with ExitStack() as stack:
            try:
                staging_path = stack.enter_context(self._stage_handoff(bundle))
            except Exception as e:
                raise self._failure("stage", e) from e

            worker = await self._step(
                "spawn",
                executor,
                self._spawn_context,
                bundle,
                staging_path,
                on_abandon=self._discard_worker,
            )
            try:
                version = await self._step("instantiate", executor, self._instantiate, worker, bundle)
            except BaseException:
                # 包括 CancelledError（超时）：不暴露半成品 worker
                self._discard_worker(worker)
                raise

        # handoff 资源已释放
        handle = self._handle_factory(worker, bundle, version or "")
        logger.info(f"[Bootstrap] Engine ready: {handle!r}")
        return handle

    async def _step(
        self,
        name: str,
        executor: ThreadPoolExecutor,
        func: Callable[..., Any],
        *args: Any,
        on_abandon: Callable[[Any], None] | None = None,
    ) -> Any:
        """执行单个步骤，失败归一化为 InitializationFailed

        同步能力放到线程池执行，不阻塞事件循环。步骤被取消时，
        若线程中的同步能力稍后仍产出结果，交给 on_abandon 清理。
        """
        logger.debug(f"[Bootstrap] Step {name} started")
        try:
            if inspect.iscoroutinefunction(func):
                result = await func(*args)
            else:
                future = executor.submit(func, *args)
                try:
                    result = await asyncio.wrap_future(future)
                except asyncio.CancelledError:
                    if on_abandon is not None:
                        future.add_done_callback(self._abandon_callback(on_abandon))
                    raise
                if inspect.isawaitable(result):
                    result = await result
        except InitializationFailed:
            raise
        except Exception as e:
            raise self._failure(name, e) from e
        return result

    @staticmethod
    def _abandon_callback(on_abandon: Callable[[Any], None]) -> Callable[[Future], None]:
        def _callback(future: Future) -> None:
            if future.cancelled() or future.exception() is not None:
                return
            logger.warning("[Bootstrap] Discarding worker produced after cancellation")
            on_abandon(future.result())

        return _callback

    @staticmethod
    def _failure(step: str, exc: BaseException) -> InitializationFailed:
        message = _describe(exc)
        logger.error(f"[Bootstrap] Step {step} failed: {message}")
        if config.METRICS_ENABLED:
            metrics.inc("bootstrap.step_fail", {"step": step})
        return InitializationFailed(message, step=step)

    @staticmethod
    def _discard_worker(worker: Any) -> None:
        terminate = getattr(worker, "terminate", None)
        if terminate is None:
            return
        try:
            terminate()
        except Exception as e:
            logger.error(f"[Bootstrap] Failed to terminate worker: {e}")
