"""Web 服务模块"""

from enginegate.web.app import create_app, start_server
from enginegate.web.server import WebServer

__all__ = ["create_app", "start_server", "WebServer"]
