"""Gate view / query result renderer using Rich library."""

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..engine.types import QueryResult, TableInfo
from ..gate import GatePhase, GateView

# 阶段 -> (图标, 样式)
PHASE_STYLES = {
    GatePhase.PENDING: ("…", "yellow"),
    GatePhase.FAILED: ("✗", "bold red"),
    GatePhase.READY: ("✓", "green"),
}

NULL_TEXT = "NULL"


def render_view(view: GateView) -> Text:
    """渲染 Gate 视图为一行文本"""
    icon, style = PHASE_STYLES[view.phase]
    text = Text()
    text.append(f"{icon} ", style=style)
    text.append(view.headline, style=style)
    if view.phase is GatePhase.READY and view.handle is not None:
        info = view.handle.to_dict()
        text.append(f"  ({info['bundle']}, threads={info['threads']}", style="dim")
        if info["version"]:
            text.append(f", v{info['version']}", style="dim")
        text.append(")", style="dim")
    return text


def _cell(value: object) -> Text:
    if value is None:
        return Text(NULL_TEXT, style="dim")
    return Text(str(value))


def render_result(result: QueryResult, max_rows: int = 50) -> Table:
    """渲染查询结果为表格（超出 max_rows 的行省略）"""
    table = Table(show_lines=False)
    for name, type_name in zip(result.columns, result.types):
        table.add_column(Text.assemble(name, "\n", (type_name, "dim")))

    for row in result.rows[:max_rows]:
        table.add_row(*(_cell(v) for v in row))

    hidden = result.row_count - max_rows
    table.caption = f"{result.row_count} rows" + (f" ({hidden} not shown)" if hidden > 0 else "")
    return table


def render_table_info(info: TableInfo) -> Table:
    """渲染已注册表的 schema"""
    table = Table(title=f"{info.table_name} ({info.row_count} rows)")
    table.add_column("column")
    table.add_column("type", style="dim")
    for name, type_name in zip(info.columns, info.types):
        table.add_row(Text(name), Text(type_name))
    return table


class GateRenderer:
    """把 Gate 视图和结果输出到终端"""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def show_view(self, view: GateView) -> None:
        self.console.print(render_view(view))

    def show_result(self, result: QueryResult, max_rows: int = 50) -> None:
        self.console.print(render_result(result, max_rows=max_rows))

    def show_table_info(self, info: TableInfo) -> None:
        self.console.print(render_table_info(info))
