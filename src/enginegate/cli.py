"""enginegate 命令行入口

用法:
    enginegate status                      # 初始化引擎并显示状态
    enginegate query "SELECT 42" -f a.csv  # 注册文件后执行 SQL
    enginegate serve --port 8766           # 启动 HTTP/WebSocket 服务
"""

import argparse
import asyncio

from rich.text import Text

from . import config
from .engine import EngineError, EngineRegistry
from .gate import Gate, GatePhase
from .render import GateRenderer
from .runtime import get_registry
from .telemetry import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_TIMEOUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="enginegate", description="Shared analytical engine access layer")
    parser.add_argument("--log-level", default=None, help=f"log level (default: {config.LOG_LEVEL})")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="initialize the engine and show its state")
    status.add_argument("--timeout", type=float, default=None, help="seconds to wait for the engine")

    query = sub.add_parser("query", help="run SQL against the engine")
    query.add_argument("sql")
    query.add_argument("-f", "--file", action="append", default=[], help="register a csv/parquet/json file first")
    query.add_argument("--max-rows", type=int, default=50)
    query.add_argument("--timeout", type=float, default=None, help="seconds to wait for the engine")

    serve = sub.add_parser("serve", help="start the HTTP/WebSocket server")
    serve.add_argument("--host", default=config.WEB_HOST)
    serve.add_argument("--port", type=int, default=config.WEB_PORT)
    return parser


async def run_command(
    args: argparse.Namespace,
    registry: EngineRegistry | None = None,
    renderer: GateRenderer | None = None,
) -> int:
    """执行 status / query 命令

    Returns:
        进程退出码
    """
    registry = registry or get_registry()
    renderer = renderer or GateRenderer()
    gate = Gate(registry, on_change=renderer.show_view, name="cli")

    try:
        gate.activate()
        view = await gate.wait_ready(args.timeout)
        if view.phase is GatePhase.FAILED:
            return EXIT_FAILED
        if args.command == "status":
            return EXIT_OK

        handle = view.handle
        for path in args.file:
            renderer.show_table_info(await handle.register_file(path))
        renderer.show_result(await handle.query(args.sql), max_rows=args.max_rows)
        return EXIT_OK
    except asyncio.TimeoutError:
        renderer.console.print(f"[yellow]Engine not ready after {args.timeout:g}s[/yellow]")
        return EXIT_TIMEOUT
    except EngineError as e:
        renderer.console.print(Text.assemble(("Query failed: ", "bold red"), str(e)))
        return EXIT_FAILED
    finally:
        gate.deactivate()
        registry.shutdown()


def main(argv: list[str] | None = None) -> int:
    """入口函数"""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.command == "serve":
            from .web import start_server

            asyncio.run(start_server(host=args.host, port=args.port))
            return EXIT_OK
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nStopped")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
