"""
Signal Hub - WebRTC 信令服务器

客户端按房间加入，Hub 通知房间内已有成员，并透明转发建立点对点连接所需的
offer / answer / ice-candidate 协商消息。Hub 从不接触实际传输的数据。

主要组件：
- protocol: 消息类型、解析与构造、异常定义
- hub: 注册表、房间协议、消息路由与 WebSocket 服务器
- client: 信令客户端
- monitor: 内部计数器与统计展示
- utils: 配置与日志
"""

__version__ = "1.0.0"

from .protocol import (
    BROADCAST,
    MessageBuilder,
    MessageKind,
    SignalingError,
    ValidationError,
    ParseError,
    UnknownTypeError,
    DeliveryFailure,
    TransportFailure,
)
from .hub import HubServer, SignalingHub, start_hub_server
from .client import SignalingClient
from .utils import HubConfig, configure_logging, get_logger

__all__ = [
    "__version__",
    # 协议
    "BROADCAST",
    "MessageBuilder",
    "MessageKind",
    # Hub
    "HubServer",
    "SignalingHub",
    "start_hub_server",
    # 客户端
    "SignalingClient",
    # 工具
    "HubConfig",
    "configure_logging",
    "get_logger",
    # 异常
    "SignalingError",
    "ValidationError",
    "ParseError",
    "UnknownTypeError",
    "DeliveryFailure",
    "TransportFailure",
]
