"""Gate 测试"""

import asyncio
from unittest.mock import patch

import pytest

from enginegate.engine import EngineRegistry, InitializationFailed, LifecycleState, LifecycleStatus
from enginegate.gate import Gate, GatePhase, GateView


class TestGateView:
    """LifecycleState -> GateView 映射"""

    def test_pending_statuses(self):
        assert LifecycleStatus.UNINITIALIZED.is_pending
        assert LifecycleStatus.INITIALIZING.is_pending
        assert not LifecycleStatus.READY.is_pending
        assert not LifecycleStatus.FAILED.is_pending

    def test_pending_states(self):
        assert GateView.from_state(LifecycleState.uninitialized()).phase is GatePhase.PENDING
        assert GateView.from_state(LifecycleState.initializing(1)).phase is GatePhase.PENDING

    def test_failed_message_verbatim(self):
        error = InitializationFailed("engine module 'duckdb' is not installed", step="resolve")
        view = GateView.from_state(LifecycleState.failed(error, 1))

        assert view.phase is GatePhase.FAILED
        assert view.message == "engine module 'duckdb' is not installed"
        assert view.headline == "Failed to initialize engine: engine module 'duckdb' is not installed"
        assert view.handle is None

    def test_pending_headline(self):
        view = GateView.from_state(LifecycleState.initializing(1))

        assert view.headline == "Initializing data engine..."
        assert not view.is_ready

    def test_to_dict(self):
        error = InitializationFailed("boom")
        data = GateView.from_state(LifecycleState.failed(error, 2)).to_dict()

        assert data == {
            "phase": "failed",
            "message": "boom",
            "headline": "Failed to initialize engine: boom",
        }


class TestGate:
    """Gate 生命周期"""

    @pytest.mark.asyncio
    async def test_activate_requests_init(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())
        gate = Gate(registry)

        view = gate.activate()

        assert view.phase is GatePhase.PENDING
        assert gate.active
        ready = await gate.wait_ready(timeout=2)
        assert ready.is_ready
        assert ready.handle is registry.get_state().handle
        gate.deactivate()

    @pytest.mark.asyncio
    async def test_on_change_receives_views(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())
        views: list[GateView] = []
        gate = Gate(registry, on_change=views.append)

        gate.activate()
        await registry.wait(timeout=2)

        assert [v.phase for v in views] == [GatePhase.PENDING, GatePhase.READY]
        gate.deactivate()

    @pytest.mark.asyncio
    async def test_two_gates_share_one_bootstrap(self, capabilities):
        """两个独立挂载的 Gate：一次 bootstrap，同时切换"""
        registry = EngineRegistry(capabilities.bootstrapper())
        first: list[GateView] = []
        second: list[GateView] = []

        Gate(registry, on_change=first.append, name="a").activate()
        Gate(registry, on_change=second.append, name="b").activate()
        await registry.wait(timeout=2)

        assert capabilities.calls["resolve"] == 1
        assert first[-1].is_ready and second[-1].is_ready
        assert first[-1].handle is second[-1].handle

    @pytest.mark.asyncio
    async def test_gate_mounted_after_ready(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())
        registry.request_init()
        await registry.wait(timeout=2)
        views: list[GateView] = []

        view = Gate(registry, on_change=views.append).activate()

        assert view.is_ready
        assert views == []
        assert capabilities.calls["resolve"] == 1

    @pytest.mark.asyncio
    async def test_failed_view_shows_error(self, make_capabilities):
        caps = make_capabilities(fail_step="spawn", message="worker exited with code 3")
        registry = EngineRegistry(caps.bootstrapper())
        gate = Gate(registry)

        gate.activate()
        view = await gate.wait_ready(timeout=2)

        assert view.phase is GatePhase.FAILED
        assert view.headline == "Failed to initialize engine: worker exited with code 3"
        # 再次激活不会重试
        assert gate.activate().phase is GatePhase.FAILED
        assert caps.calls["spawn"] == 1

    @pytest.mark.asyncio
    async def test_deactivate_stops_notifications(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())
        views: list[GateView] = []
        gate = Gate(registry, on_change=views.append)

        gate.activate()
        gate.deactivate()
        gate.deactivate()
        await registry.wait(timeout=2)

        assert [v.phase for v in views] == [GatePhase.PENDING]
        assert not gate.active
        assert registry.observer_count == 0

    @pytest.mark.asyncio
    async def test_view_is_derived_from_registry(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())
        gate = Gate(registry)

        assert gate.view.phase is GatePhase.PENDING
        registry.request_init()
        await registry.wait(timeout=2)
        assert gate.view.is_ready

    @pytest.mark.asyncio
    async def test_context_manager(self, capabilities):
        registry = EngineRegistry(capabilities.bootstrapper())

        with Gate(registry) as gate:
            assert gate.active
            assert registry.observer_count == 1

        assert registry.observer_count == 0
        await registry.wait(timeout=2)

    @pytest.mark.asyncio
    async def test_wait_ready_timeout(self, make_capabilities):
        caps = make_capabilities(hang=True)
        registry = EngineRegistry(caps.bootstrapper(), timeout=0)
        gate = Gate(registry)
        gate.activate()

        with pytest.raises(asyncio.TimeoutError):
            await gate.wait_ready(timeout=0.05)

        assert gate.view.phase is GatePhase.PENDING
        gate.deactivate()

    @pytest.mark.asyncio
    async def test_activate_failure_unsubscribes(self, capabilities):
        """request_init 抛出异常时不残留订阅"""
        registry = EngineRegistry(capabilities.bootstrapper())
        gate = Gate(registry)

        with patch.object(registry, "request_init", side_effect=RuntimeError("scheduler unavailable")):
            with pytest.raises(RuntimeError, match="scheduler unavailable"):
                gate.activate()

        assert not gate.active
        assert registry.observer_count == 0
