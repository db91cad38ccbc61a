"""Signal Hub 指标收集器

Hub 内部计数器，不对客户端可见。定向转发失败只体现在这里和服务端日志中。
"""

import time
from dataclasses import dataclass, field, fields
from typing import Any, Dict


@dataclass
class HubMetrics:
    """Hub 计数器"""

    started_at: float = field(default_factory=time.time)

    # 连接
    connections_opened: int = 0
    connections_closed: int = 0

    # 房间协议
    joins: int = 0
    rejoins: int = 0
    leaves: int = 0

    # 转发
    relays_received: int = 0
    deliveries_attempted: int = 0
    deliveries_succeeded: int = 0
    relays_dropped: int = 0

    # 发送与错误
    messages_sent: int = 0
    send_failures: int = 0
    errors_sent: int = 0

    def record_connection_opened(self) -> None:
        self.connections_opened += 1

    def record_connection_closed(self) -> None:
        self.connections_closed += 1

    def record_join(self, rejoin: bool = False) -> None:
        self.joins += 1
        if rejoin:
            self.rejoins += 1

    def record_leave(self) -> None:
        self.leaves += 1

    def record_relay(self, attempted: int, delivered: int) -> None:
        """记录一次转发

        Args:
            attempted: 尝试投递的目标数
            delivered: 成功投递的目标数
        """
        self.relays_received += 1
        self.deliveries_attempted += attempted
        self.deliveries_succeeded += delivered

    def record_drop(self) -> None:
        self.relays_dropped += 1

    def record_send(self, success: bool) -> None:
        if success:
            self.messages_sent += 1
        else:
            self.send_failures += 1

    def record_error_sent(self) -> None:
        self.errors_sent += 1

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def snapshot(self) -> Dict[str, Any]:
        """导出当前计数"""
        return {
            "uptime": round(self.uptime, 3),
            "connections_opened": self.connections_opened,
            "connections_closed": self.connections_closed,
            "joins": self.joins,
            "rejoins": self.rejoins,
            "leaves": self.leaves,
            "relays_received": self.relays_received,
            "deliveries_attempted": self.deliveries_attempted,
            "deliveries_succeeded": self.deliveries_succeeded,
            "relays_dropped": self.relays_dropped,
            "messages_sent": self.messages_sent,
            "send_failures": self.send_failures,
            "errors_sent": self.errors_sent,
        }

    def reset(self) -> None:
        """清零所有计数"""
        for item in fields(self):
            if item.name != "started_at":
                setattr(self, item.name, 0)
        self.started_at = time.time()
