"""Signal Hub 协议模块

包含消息类型、消息解析/构造与异常定义。
"""

from .types import BROADCAST, INBOUND_KINDS, RELAY_KINDS, MessageKind
from .messages import (
    InboundMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    MessageBuilder,
    RelayMessage,
    encode_message,
    now_ms,
    parse_message,
)
from .exceptions import (
    DeliveryFailure,
    ParseError,
    SignalingError,
    TransportFailure,
    UnknownTypeError,
    ValidationError,
)

__all__ = [
    # 类型
    "MessageKind",
    "BROADCAST",
    "RELAY_KINDS",
    "INBOUND_KINDS",
    # 消息
    "InboundMessage",
    "JoinRoomMessage",
    "LeaveRoomMessage",
    "RelayMessage",
    "MessageBuilder",
    "encode_message",
    "parse_message",
    "now_ms",
    # 异常
    "SignalingError",
    "ValidationError",
    "ParseError",
    "UnknownTypeError",
    "DeliveryFailure",
    "TransportFailure",
]
