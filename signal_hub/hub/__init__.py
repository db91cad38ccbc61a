"""
Hub 服务器模块

房间注册与信令转发：
- 注册表（房间 / Peer / 连接）
- 房间协议与消息转发
- 消息路由
- WebSocket 服务器
"""

from .registry import Connection, PeerEntry, PeerRegistry
from .hub import Delivery, SignalingHub
from .router import MessageRouter
from .server import HubServer, start_hub_server

__all__ = [
    "Connection",
    "PeerEntry",
    "PeerRegistry",
    "Delivery",
    "SignalingHub",
    "MessageRouter",
    "HubServer",
    "start_hub_server",
]
