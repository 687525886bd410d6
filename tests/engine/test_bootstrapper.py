"""Bootstrapper 测试"""

import json
import os
from contextlib import contextmanager

import pytest

from enginegate.engine import Bootstrapper, BundleDescriptor, EngineHandle, InitializationFailed
from enginegate.engine.bootstrapper import instantiate_engine, staged_manifest
from enginegate.telemetry import metrics


class TestBootstrapperSuccess:
    """成功路径"""

    @pytest.mark.asyncio
    async def test_run_returns_handle(self, capabilities):
        handle = await capabilities.bootstrapper().run()

        assert isinstance(handle, EngineHandle)
        assert handle.bundle.name == "test-bundle"
        assert handle.version == "1.0.0-test"
        assert handle.pid == 4242

    @pytest.mark.asyncio
    async def test_steps_run_once_in_order(self, capabilities):
        await capabilities.bootstrapper().run()

        assert capabilities.calls == {"resolve": 1, "stage": 1, "spawn": 1, "instantiate": 1}

    @pytest.mark.asyncio
    async def test_staging_released_before_handle_returned(self, capabilities):
        await capabilities.bootstrapper().run()

        assert capabilities.open_resources == 0

    @pytest.mark.asyncio
    async def test_custom_handle_factory(self, capabilities):
        built = []

        def factory(worker, bundle, version):
            built.append((worker, bundle, version))
            return EngineHandle(worker, bundle, version)

        bootstrapper = Bootstrapper(
            resolve_bundle=capabilities.resolve,
            stage_handoff=capabilities.stage,
            spawn_context=capabilities.spawn,
            instantiate=capabilities.instantiate,
            handle_factory=factory,
        )
        await bootstrapper.run()

        assert built[0][0] is capabilities.workers[0]
        assert built[0][2] == "1.0.0-test"


class TestBootstrapperFailure:
    """失败归一化"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step", ["resolve", "spawn", "instantiate"])
    async def test_failure_keeps_message_verbatim(self, make_capabilities, step):
        caps = make_capabilities(fail_step=step, message=f"{step} exploded: code 7")

        with pytest.raises(InitializationFailed) as exc_info:
            await caps.bootstrapper().run()

        assert exc_info.value.message == f"{step} exploded: code 7"
        assert exc_info.value.step == step
        assert str(exc_info.value) == f"{step} exploded: code 7"

    @pytest.mark.asyncio
    async def test_resolve_failure_aborts_later_steps(self, make_capabilities):
        caps = make_capabilities(fail_step="resolve")

        with pytest.raises(InitializationFailed):
            await caps.bootstrapper().run()

        assert caps.calls == {"resolve": 1, "stage": 0, "spawn": 0, "instantiate": 0}

    @pytest.mark.asyncio
    async def test_spawn_failure_releases_staging(self, make_capabilities):
        caps = make_capabilities(fail_step="spawn")

        with pytest.raises(InitializationFailed):
            await caps.bootstrapper().run()

        assert caps.calls["stage"] == 1
        assert caps.calls["instantiate"] == 0
        assert caps.open_resources == 0

    @pytest.mark.asyncio
    async def test_instantiate_failure_terminates_worker(self, make_capabilities):
        caps = make_capabilities(fail_step="instantiate", message="out of memory")

        with pytest.raises(InitializationFailed, match="out of memory"):
            await caps.bootstrapper().run()

        assert caps.open_resources == 0
        assert caps.workers[0].terminated is True

    @pytest.mark.asyncio
    async def test_stage_failure(self, capabilities):
        @contextmanager
        def broken_stage(bundle):
            raise OSError("No space left on device")
            yield  # pragma: no cover

        bootstrapper = Bootstrapper(
            resolve_bundle=capabilities.resolve,
            stage_handoff=broken_stage,
            spawn_context=capabilities.spawn,
            instantiate=capabilities.instantiate,
        )

        with pytest.raises(InitializationFailed) as exc_info:
            await bootstrapper.run()

        assert exc_info.value.step == "stage"
        assert exc_info.value.message == "No space left on device"
        assert capabilities.calls["spawn"] == 0

    @pytest.mark.asyncio
    async def test_empty_exception_message_uses_class_name(self, capabilities):
        def resolve():
            raise LookupError()

        bootstrapper = Bootstrapper(
            resolve_bundle=resolve,
            stage_handoff=capabilities.stage,
            spawn_context=capabilities.spawn,
            instantiate=capabilities.instantiate,
        )

        with pytest.raises(InitializationFailed, match="LookupError"):
            await bootstrapper.run()

    @pytest.mark.asyncio
    async def test_step_failure_metric(self, make_capabilities):
        caps = make_capabilities(fail_step="spawn")

        with pytest.raises(InitializationFailed):
            await caps.bootstrapper().run()

        assert metrics.get_counter("bootstrap.step_fail", {"step": "spawn"}) == 1
        assert metrics.get_counter("bootstrap.step_fail", {"step": "resolve"}) == 0


class TestStagedManifest:
    """handoff 临时文件"""

    def test_manifest_written_and_removed(self):
        bundle = BundleDescriptor(name="spawn", start_method="spawn", threads=4)

        with staged_manifest(bundle) as path:
            assert os.path.exists(path)
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            assert data["bundle"]["name"] == "spawn"
            assert data["bundle"]["threads"] == 4
            assert data["database"] == ":memory:"

        assert not os.path.exists(path)

    def test_manifest_removed_on_error(self):
        bundle = BundleDescriptor(name="spawn", start_method="spawn")

        with pytest.raises(RuntimeError):
            with staged_manifest(bundle) as path:
                raise RuntimeError("spawn failed")

        assert not os.path.exists(path)


class TestInstantiateEngine:
    def test_delegates_to_worker(self):
        class Worker:
            def instantiate(self):
                return "1.1.3"

        bundle = BundleDescriptor(name="spawn", start_method="spawn")
        assert instantiate_engine(Worker(), bundle) == "1.1.3"
