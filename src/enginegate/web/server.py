"""Web 服务器"""

import asyncio

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from enginegate import config
from enginegate.engine import EngineError, EngineHandle, EngineRegistry, LifecycleState
from enginegate.gate import Gate, GatePhase, GateView
from enginegate.telemetry import get_logger
from enginegate.web.models import (
    EngineStateResponse,
    QueryRequest,
    QueryResponse,
    RegisterFileRequest,
    RetryResponse,
    TableResponse,
)

logger = get_logger(__name__)


def state_payload(state: LifecycleState) -> EngineStateResponse:
    """LifecycleState -> API 响应"""
    view = GateView.from_state(state)
    data = state.to_dict()
    return EngineStateResponse(
        status=data["status"],
        phase=view.phase.value,
        headline=view.headline,
        message=data["message"],
        attempt=data["attempt"],
        changed_at=data["changed_at"],
        engine=data["engine"],
    )


class WebServer:
    """HTTP + WebSocket 服务器

    引擎不会在启动时初始化：第一个依赖引擎的请求通过 Gate 懒触发。
    """

    def __init__(self, registry: EngineRegistry):
        self.app = FastAPI(title="enginegate")
        self.registry = registry
        self.clients: list[WebSocket] = []

        self._setup_routes()

        # 注册状态变化回调 -> 广播
        self._unsubscribe = registry.subscribe(self._on_state_change)

    async def require_engine(self, wait: float = 0.0) -> EngineHandle:
        """FastAPI 依赖：通过 Gate 获取可用引擎

        Args:
            wait: pending 时最多等待的秒数（query 参数）

        Raises:
            HTTPException: 503（初始化中或初始化失败）
        """
        gate = Gate(self.registry, name="request")
        view = gate.activate()
        try:
            if view.phase is GatePhase.PENDING and wait > 0:
                try:
                    view = await gate.wait_ready(timeout=wait)
                except asyncio.TimeoutError:
                    view = gate.view
        finally:
            gate.deactivate()

        if view.phase is GatePhase.READY:
            return view.handle
        if view.phase is GatePhase.FAILED:
            raise HTTPException(status_code=503, detail=view.headline)
        raise HTTPException(
            status_code=503,
            detail=view.headline,
            headers={"Retry-After": str(config.GATE_RETRY_AFTER_SECONDS)},
        )

    def _on_state_change(self, state: LifecycleState):
        """状态变化回调（registry 调度返回的协程）"""
        return self.broadcast({"type": "engine_state", **state_payload(state).model_dump()})

    def _setup_routes(self):
        @self.app.exception_handler(EngineError)
        async def engine_error_handler(request, exc: EngineError):
            return JSONResponse(status_code=400, content={"detail": str(exc)})

        @self.app.get("/api/engine", response_model=EngineStateResponse)
        async def get_engine_state():
            """获取引擎状态（不触发初始化）"""
            return state_payload(self.registry.get_state())

        @self.app.post("/api/engine/init", response_model=EngineStateResponse)
        async def init_engine():
            """请求初始化（幂等）"""
            self.registry.request_init()
            return state_payload(self.registry.get_state())

        @self.app.post("/api/engine/retry", response_model=RetryResponse)
        async def retry_engine():
            """失败后显式重试"""
            started = self.registry.retry()
            return RetryResponse(started=started, state=state_payload(self.registry.get_state()))

        @self.app.post("/api/query", response_model=QueryResponse)
        async def run_query(request: QueryRequest, engine: EngineHandle = Depends(self.require_engine)):
            """执行 SQL"""
            result = await engine.query(request.sql)
            return QueryResponse(**result.to_dict())

        @self.app.post("/api/tables", response_model=TableResponse)
        async def register_table(
            request: RegisterFileRequest, engine: EngineHandle = Depends(self.require_engine)
        ):
            """注册本地文件为表"""
            table = await engine.register_file(request.path, request.table_name)
            return TableResponse(**table.to_dict())

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            self.clients.append(websocket)
            try:
                await websocket.send_json(
                    {"type": "engine_state", **state_payload(self.registry.get_state()).model_dump()}
                )
                while True:
                    data = await websocket.receive_text()
                    await self._handle_message(websocket, data)
            except WebSocketDisconnect:
                logger.debug("[WebServer] Client disconnected")
            finally:
                # broadcast 可能已移除该客户端
                if websocket in self.clients:
                    self.clients.remove(websocket)

    async def _handle_message(self, websocket: WebSocket, data: str):
        """处理客户端消息: init / retry"""
        if data == "init":
            self.registry.request_init()
        elif data == "retry":
            started = self.registry.retry()
            await websocket.send_json({"type": "retry_result", "started": started})
        else:
            await websocket.send_json({"type": "error", "message": f"Unknown command: {data}"})

    async def broadcast(self, data: dict):
        """广播消息给所有客户端"""
        for client in list(self.clients):
            try:
                await client.send_json(data)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"[WebServer] Dropping client: {e}")
                if client in self.clients:
                    self.clients.remove(client)

    def close(self) -> None:
        """取消 registry 订阅"""
        self._unsubscribe()
