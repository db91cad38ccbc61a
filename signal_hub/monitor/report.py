"""Hub 统计信息展示"""

from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def build_stats_table(stats: Dict[str, Any]) -> Table:
    """构建 Hub 状态表格

    Args:
        stats: HubServer.get_stats() 的返回值

    Returns:
        rich 表格
    """
    table = Table(title="Signal Hub 状态")
    table.add_column("项目", style="cyan", no_wrap=True)
    table.add_column("值", style="green")

    table.add_row("在线 Peer", str(stats.get("connectedPeers", 0)))
    table.add_row("活跃房间", str(stats.get("activeRooms", 0)))
    table.add_row("打开的连接", str(stats.get("connections", 0)))

    for name, value in stats.get("metrics", {}).items():
        table.add_row(name, str(value))

    return table


def build_rooms_table(stats: Dict[str, Any]) -> Table:
    """构建房间明细表格"""
    table = Table(title="房间")
    table.add_column("房间", style="cyan", no_wrap=True)
    table.add_column("人数", style="magenta", justify="right")
    table.add_column("成员", style="green")

    for room in stats.get("roomDetails", []):
        table.add_row(
            room["roomId"], str(room["peerCount"]), ", ".join(room["peers"])
        )

    return table


def print_stats(stats: Dict[str, Any], console: Optional[Console] = None) -> None:
    """输出 Hub 统计信息到控制台"""
    console = console or Console()
    console.print(build_stats_table(stats))
    if stats.get("roomDetails"):
        console.print(build_rooms_table(stats))
    else:
        console.print(Panel("没有活跃房间", border_style="blue"))
