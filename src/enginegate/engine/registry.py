"""EngineRegistry - 引擎生命周期的唯一事实来源

职责：
- 持有生命周期快照 {UNINITIALIZED, INITIALIZING, READY, FAILED}
- request_init: 幂等触发，整个生命周期内至多一个 bootstrap 在途
- subscribe: 状态变化时同步通知所有观察者
- retry: 仅从 FAILED 显式重试

流转：
    UNINITIALIZED → INITIALIZING → READY | FAILED
    FAILED → INITIALIZING（仅 retry）
READY 为永久终态，handle 不会被替换。
"""

import asyncio
import inspect
import threading
from collections.abc import Callable
from typing import Any

from .. import config
from ..telemetry import get_logger, metrics
from .bootstrapper import Bootstrapper
from .types import InitializationFailed, LifecycleState, LifecycleStatus

logger = get_logger(__name__)

# 回调类型
StateObserver = Callable[[LifecycleState], Any]
Unsubscribe = Callable[[], None]


class EngineRegistry:
    """引擎注册表

    状态快照的读取不加锁（引用赋值是原子的）；所有写入都在
    self._lock 内完成，check-and-set 对并发调用方不可分割。

    使用示例:
        registry = EngineRegistry(Bootstrapper())
        unsubscribe = registry.subscribe(lambda state: print(state.status))
        registry.request_init()          # 立即返回
        state = await registry.wait()    # READY 或 FAILED
    """

    def __init__(
        self,
        bootstrapper: Bootstrapper | None = None,
        timeout: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        """初始化

        Args:
            bootstrapper: Bootstrapper 实例（默认使用真实 worker + 引擎）
            timeout: 单次 bootstrap 超时（秒），None 使用配置，0 表示不限时
            loop: 运行 bootstrap 的事件循环（默认取首次调用时的运行中循环，
                没有时启动后台循环线程）
        """
        self._bootstrapper = bootstrapper or Bootstrapper()
        self._timeout = config.BOOTSTRAP_TIMEOUT_SECONDS if timeout is None else timeout
        self._loop = loop
        self._owned_loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()
        self._state = LifecycleState.uninitialized()
        self._observers: list[StateObserver] = []
        self._task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # === 查询 ===

    def get_state(self) -> LifecycleState:
        """当前快照（无副作用）"""
        return self._state

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # === 订阅 ===

    def subscribe(self, observer: StateObserver) -> Unsubscribe:
        """订阅状态变化

        Args:
            observer: (LifecycleState) -> Any，返回协程时作为任务调度

        Returns:
            取消订阅函数（可重复调用）
        """
        with self._lock:
            self._observers.append(observer)
            self._record_observers()

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)
                    self._record_observers()

        return unsubscribe

    # === 触发 ===

    def request_init(self) -> None:
        """幂等触发初始化

        - UNINITIALIZED: 进入 INITIALIZING 并调度唯一一次 bootstrap，立即返回
        - 其它状态: no-op，结果通过订阅观察

        可从任意线程调用；没有可用的事件循环时 bootstrap 在后台循环线程中运行。
        """
        if config.METRICS_ENABLED:
            metrics.inc("registry.requests")
        self._begin(LifecycleStatus.UNINITIALIZED, "request")

    def retry(self) -> bool:
        """从 FAILED 显式重试

        Returns:
            是否启动了新的 bootstrap（非 FAILED 状态返回 False）
        """
        started = self._begin(LifecycleStatus.FAILED, "retry")
        if started:
            logger.warning(f"[Registry] Retrying engine bootstrap (attempt {self._state.attempt})")
            if config.METRICS_ENABLED:
                metrics.inc("registry.retries")
        return started

    async def wait(self, timeout: float | None = None) -> LifecycleState:
        """等待终态（不会触发初始化）

        Raises:
            asyncio.TimeoutError: timeout 内未到达终态
        """
        state = self._state
        if state.status.is_terminal:
            return state

        loop = asyncio.get_running_loop()
        future: asyncio.Future[LifecycleState] = loop.create_future()

        def _resolve(s: LifecycleState) -> None:
            if not future.done():
                future.set_result(s)

        def _on_change(s: LifecycleState) -> None:
            if s.status.is_terminal:
                loop.call_soon_threadsafe(_resolve, s)

        unsubscribe = self.subscribe(_on_change)
        try:
            # 订阅前可能已到达终态
            state = self._state
            if state.status.is_terminal:
                return state
            return await asyncio.wait_for(future, timeout)
        finally:
            unsubscribe()

    def shutdown(self) -> None:
        """进程退出时释放 worker（不改变生命周期状态）"""
        handle = self._state.handle
        if handle is not None:
            logger.info("[Registry] Shutting down engine worker")
            handle.close()
        if self._owned_loop is not None:
            self._owned_loop.call_soon_threadsafe(self._owned_loop.stop)
            self._owned_loop = None

    # === 内部 ===

    def _begin(self, expected: LifecycleStatus, reason: str) -> bool:
        """check-and-set: expected → INITIALIZING，成功者调度 bootstrap"""
        with self._lock:
            current = self._state
            if current.status is not expected:
                logger.debug(f"[Registry] {reason} ignored in state {current.status.value}")
                return False
            loop, in_loop = self._resolve_loop()
            new_state = LifecycleState.initializing(current.attempt + 1)
            self._state = new_state

        logger.info(f"[Registry] {current.status.value} → initializing ({reason}, attempt {new_state.attempt})")
        self._notify(new_state)

        # 先通知 INITIALIZING，再调度 bootstrap，保证观察者看到的顺序
        if in_loop:
            self._task = loop.create_task(self._run(new_state.attempt))
        else:
            asyncio.run_coroutine_threadsafe(self._run(new_state.attempt), loop)
        return True

    def _resolve_loop(self) -> tuple[asyncio.AbstractEventLoop, bool]:
        """返回 (loop, 是否在该 loop 线程中)

        优先使用调用方的运行中循环，其次是已绑定的循环；都没有时
        启动 registry 自己的后台循环线程。调用方持有 self._lock。
        """
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            self._loop = running
            return running, True
        if self._loop_usable():
            return self._loop, False
        return self._start_background_loop(), False

    def _loop_usable(self) -> bool:
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        return loop.is_running() or loop is self._owned_loop

    def _start_background_loop(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, name="enginegate-registry", daemon=True)
        thread.start()
        self._loop = loop
        self._owned_loop = loop
        logger.info("[Registry] No running event loop, started background loop thread")
        return loop

    async def _run(self, attempt: int) -> None:
        """执行 bootstrap 并发布终态（唯一的 bootstrap 执行者）"""
        if config.METRICS_ENABLED:
            metrics.inc("registry.bootstrap.started")

        try:
            if self._timeout and self._timeout > 0:
                handle = await asyncio.wait_for(self._bootstrapper.run(), self._timeout)
            else:
                handle = await self._bootstrapper.run()
        except InitializationFailed as e:
            error = e
        except asyncio.TimeoutError:
            error = InitializationFailed(
                f"engine bootstrap timed out after {self._timeout:g}s", step="timeout"
            )
        except asyncio.CancelledError:
            self._publish(
                LifecycleState.failed(
                    InitializationFailed("engine bootstrap was cancelled", step="cancelled"), attempt
                )
            )
            raise
        except Exception as e:
            logger.exception("[Registry] Unexpected bootstrap error")
            error = InitializationFailed(str(e) or type(e).__name__, step="unexpected")
        else:
            self._publish(LifecycleState.ready(handle, attempt))
            return

        self._publish(LifecycleState.failed(error, attempt))

    def _publish(self, state: LifecycleState) -> None:
        """发布终态并通知观察者"""
        with self._lock:
            current = self._state
            if current.status is not LifecycleStatus.INITIALIZING or current.attempt != state.attempt:
                stale = True
            else:
                stale = False
                self._state = state

        if stale:
            logger.warning(
                f"[Registry] Dropping stale result for attempt {state.attempt} "
                f"(current: {current.status.value}/{current.attempt})"
            )
            if state.handle is not None:
                state.handle.close()
            return

        if state.status is LifecycleStatus.READY:
            logger.info(f"[Registry] initializing → ready (attempt {state.attempt})")
            if config.METRICS_ENABLED:
                metrics.inc("registry.bootstrap.ok")
        else:
            logger.error(f"[Registry] initializing → failed (attempt {state.attempt}): {state.message}")
            if config.METRICS_ENABLED:
                metrics.inc("registry.bootstrap.fail")

        self._notify(state)

    def _notify(self, state: LifecycleState) -> None:
        """同步通知所有观察者（异常隔离）"""
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                result = observer(state)
                if inspect.iscoroutine(result):
                    self._schedule(result)
            except Exception as e:
                logger.error(f"[Registry] Observer failed: {e}")
                if config.METRICS_ENABLED:
                    metrics.inc("registry.observer_errors")

    def _schedule(self, coro: Any) -> None:
        """调度观察者返回的协程"""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif self._loop_usable():
            asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            coro.close()
            logger.warning("[Registry] Dropped async observer: no running event loop")

    def _record_observers(self) -> None:
        """调用方持有 self._lock"""
        if config.METRICS_ENABLED:
            metrics.gauge("registry.observers", len(self._observers))
