"""Render 模块

终端渲染：
- render_view: Gate 视图 -> rich Text
- render_result / render_table_info: 结果 -> rich Table
- GateRenderer: 输出到 Console
"""

from .renderer import GateRenderer, render_result, render_table_info, render_view

__all__ = [
    "GateRenderer",
    "render_view",
    "render_result",
    "render_table_info",
]
