"""FastAPI 应用初始化"""

import uvicorn
from fastapi import FastAPI

from enginegate import config
from enginegate.engine import EngineRegistry
from enginegate.runtime import get_registry
from enginegate.telemetry import get_logger
from enginegate.web.server import WebServer

logger = get_logger(__name__)


def create_app(registry: EngineRegistry | None = None) -> FastAPI:
    """创建 Web 应用

    Args:
        registry: 注入的 registry，None 使用进程级默认 registry
    """
    server = WebServer(registry or get_registry())
    return server.app


async def start_server(host: str | None = None, port: int | None = None) -> None:
    """启动服务器（引擎在首个依赖请求时懒初始化）"""
    registry = get_registry()
    server = WebServer(registry)

    uvicorn_config = uvicorn.Config(
        server.app,
        host=host or config.WEB_HOST,
        port=port or config.WEB_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
    uvicorn_server = uvicorn.Server(uvicorn_config)

    logger.info(f"[WebServer] Starting at http://{uvicorn_config.host}:{uvicorn_config.port}")

    try:
        await uvicorn_server.serve()
    finally:
        server.close()
        registry.shutdown()
