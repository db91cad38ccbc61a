"""Signal Hub 类型定义

本模块定义了信令协议的消息类型枚举与广播标记。
"""

from enum import Enum
from typing import Optional


class MessageKind(Enum):
    """消息类型枚举

    每条消息的 "type" 字段取值。
    """

    # 客户端 -> Hub
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"

    # 客户端 -> Hub -> 客户端（透明转发）
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"

    # Hub -> 客户端
    SERVER_INFO = "server-info"
    ROOM_JOINED = "room-joined"
    PEERS_AVAILABLE = "peers-available"
    PEER_JOINED = "peer-joined"
    PEER_RECONNECT_NEEDED = "peer-reconnect-needed"
    PEER_LEFT = "peer-left"
    ERROR = "error"

    @classmethod
    def lookup(cls, value: str) -> Optional["MessageKind"]:
        """按取值查找类型，未知时返回 None"""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_relay(self) -> bool:
        return self in RELAY_KINDS

    @property
    def is_inbound(self) -> bool:
        return self in INBOUND_KINDS


RELAY_KINDS = frozenset(
    {MessageKind.OFFER, MessageKind.ANSWER, MessageKind.ICE_CANDIDATE}
)

INBOUND_KINDS = frozenset(
    {MessageKind.JOIN_ROOM, MessageKind.LEAVE_ROOM} | RELAY_KINDS
)

# 转发目标为该值时表示发送给房间内除发送者外的所有成员
BROADCAST = "broadcast"
