"""
监控和指标模块

- Hub 内部计数器
- 基于 rich 的统计展示
"""

from .metrics import HubMetrics
from .report import build_rooms_table, build_stats_table, print_stats

__all__ = [
    "HubMetrics",
    "build_stats_table",
    "build_rooms_table",
    "print_stats",
]
