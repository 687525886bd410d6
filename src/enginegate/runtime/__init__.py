"""Runtime module - 进程级 registry 管理"""

from .bootstrap import (
    bootstrap,
    get_current_registry,
    get_registry,
)

__all__ = [
    "bootstrap",
    "get_registry",
    "get_current_registry",
]
