"""Pytest 配置与共享测试替身"""

import asyncio
from contextlib import contextmanager

import pytest

from enginegate.engine import Bootstrapper, BundleDescriptor, EngineError
from enginegate.telemetry import metrics


@pytest.fixture
def anyio_backend():
    """指定 anyio 只使用 asyncio backend"""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics():
    """每次测试前重置指标"""
    metrics.reset()
    yield
    metrics.reset()


class FakeWorker:
    """不启动进程的 worker 替身"""

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.requests: list[tuple[str, dict]] = []
        self.closed = False
        self.terminated = False

    def request(self, op: str, timeout: float | None = None, **payload) -> dict:
        self.requests.append((op, payload))
        if op == "query":
            if payload["sql"].startswith("FAIL"):
                raise EngineError("Parser Error: syntax error at or near \"FAIL\"")
            return {"columns": ["answer"], "types": ["INTEGER"], "rows": [[42]]}
        if op == "register_file":
            return {
                "table_name": payload["table_name"],
                "columns": ["id", "name"],
                "types": ["BIGINT", "VARCHAR"],
                "row_count": 3,
            }
        raise EngineError(f"unknown engine operation: {op}")

    def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:
        self.terminated = True


class FakeCapabilities:
    """可控的 Bootstrapper 能力替身

    Args:
        fail_step: 失败的步骤名（resolve / spawn / instantiate）
        message: 失败信息
        fail_attempts: 哪几次尝试失败（None 表示每次都失败）
        hang: instantiate 是否挂起（用于超时 / pending 测试）
    """

    def __init__(
        self,
        fail_step: str | None = None,
        message: str = "boom",
        fail_attempts: set[int] | None = None,
        hang: bool = False,
    ):
        self.fail_step = fail_step
        self.message = message
        self.fail_attempts = fail_attempts
        self.hang = hang
        self.calls = {"resolve": 0, "stage": 0, "spawn": 0, "instantiate": 0}
        self.open_resources = 0
        self.workers: list[FakeWorker] = []
        self.bundle = BundleDescriptor(name="test-bundle", start_method="spawn", threads=2)

    def _maybe_fail(self, step: str) -> None:
        if self.fail_step != step:
            return
        if self.fail_attempts is None or self.calls["resolve"] in self.fail_attempts:
            raise RuntimeError(self.message)

    def resolve(self) -> BundleDescriptor:
        self.calls["resolve"] += 1
        self._maybe_fail("resolve")
        return self.bundle

    @contextmanager
    def stage(self, bundle: BundleDescriptor):
        self.calls["stage"] += 1
        self.open_resources += 1
        try:
            yield "/tmp/enginegate-test-staging.json"
        finally:
            self.open_resources -= 1

    def spawn(self, bundle: BundleDescriptor, staging_path: str) -> FakeWorker:
        self.calls["spawn"] += 1
        self._maybe_fail("spawn")
        worker = FakeWorker(pid=4242 + len(self.workers))
        self.workers.append(worker)
        return worker

    async def instantiate(self, worker: FakeWorker, bundle: BundleDescriptor) -> str:
        self.calls["instantiate"] += 1
        await asyncio.sleep(0.01)
        if self.hang:
            await asyncio.sleep(3600)
        self._maybe_fail("instantiate")
        return "1.0.0-test"

    def bootstrapper(self) -> Bootstrapper:
        return Bootstrapper(
            resolve_bundle=self.resolve,
            stage_handoff=self.stage,
            spawn_context=self.spawn,
            instantiate=self.instantiate,
        )


@pytest.fixture
def capabilities():
    """成功的 bootstrap 能力"""
    return FakeCapabilities()


@pytest.fixture
def make_capabilities():
    """构造自定义的 bootstrap 能力替身"""
    return FakeCapabilities


@pytest.fixture
def make_worker():
    """构造 worker 替身"""
    return FakeWorker
