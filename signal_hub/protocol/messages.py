"""Signal Hub 消息格式定义

本模块定义信令协议的消息结构：
- 入站消息（join-room / leave-room / offer / answer / ice-candidate）的解析
- 出站消息（server-info / room-joined / peer-joined 等）的构造
所有消息都是一帧一个 JSON 对象，"type" 字段必填。
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .exceptions import ParseError, UnknownTypeError
from .types import BROADCAST, MessageKind


def now_ms() -> int:
    """当前时间戳（毫秒）"""
    return int(time.time() * 1000)


def encode_message(message: Dict[str, Any]) -> str:
    """序列化为 JSON 文本帧"""
    return json.dumps(message, ensure_ascii=False)


# === 入站消息 ===


@dataclass
class JoinRoomMessage:
    """加入房间请求"""

    room: Any = None
    peer_id: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    kind = MessageKind.JOIN_ROOM

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JoinRoomMessage":
        return cls(room=data.get("room"), peer_id=data.get("peerId"), raw=data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "room": self.room,
            "peerId": self.peer_id,
        }


@dataclass
class LeaveRoomMessage:
    """离开房间请求"""

    peer_id: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    kind = MessageKind.LEAVE_ROOM

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaveRoomMessage":
        return cls(peer_id=data.get("peerId"), raw=data)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "peerId": self.peer_id}


@dataclass
class RelayMessage:
    """协商消息（offer / answer / ice-candidate）

    Hub 不解释 payload，转发时原样发送整条消息（raw）。
    """

    kind: MessageKind
    from_peer: Optional[str] = None
    room: Optional[str] = None
    target_peer: Optional[str] = None
    payload: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_broadcast(self) -> bool:
        """目标缺省或为 "broadcast" 时按房间广播处理"""
        return not self.target_peer or self.target_peer == BROADCAST

    @classmethod
    def from_dict(cls, kind: MessageKind, data: Dict[str, Any]) -> "RelayMessage":
        return cls(
            kind=kind,
            from_peer=data.get("fromPeer"),
            room=data.get("room"),
            target_peer=data.get("targetPeer"),
            payload=data.get("payload"),
            raw=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.raw


InboundMessage = Union[JoinRoomMessage, LeaveRoomMessage, RelayMessage]


def parse_message(raw: Union[str, bytes]) -> InboundMessage:
    """解析一帧入站消息

    Args:
        raw: WebSocket 文本帧或二进制帧（UTF-8）

    Returns:
        解析后的入站消息

    Raises:
        ParseError: 不是合法的 JSON 对象
        UnknownTypeError: type 缺失或不是入站消息类型
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(details={"reason": str(e)})

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(details={"reason": str(e)})

    if not isinstance(data, dict):
        raise ParseError(details={"reason": "message must be a JSON object"})

    message_type = data.get("type")
    kind = MessageKind.lookup(message_type) if isinstance(message_type, str) else None
    if kind is None or not kind.is_inbound:
        raise UnknownTypeError(message_type)

    if kind == MessageKind.JOIN_ROOM:
        return JoinRoomMessage.from_dict(data)
    if kind == MessageKind.LEAVE_ROOM:
        return LeaveRoomMessage.from_dict(data)
    return RelayMessage.from_dict(kind, data)


# === 出站消息 ===


class MessageBuilder:
    """消息构造器

    Hub 发出的通知带毫秒时间戳；客户端请求不带。
    """

    @staticmethod
    def server_info(message: str) -> Dict[str, Any]:
        return {
            "type": MessageKind.SERVER_INFO.value,
            "message": message,
            "timestamp": now_ms(),
        }

    @staticmethod
    def room_joined(
        room: str, peer_id: str, peers: List[str], peer_count: int
    ) -> Dict[str, Any]:
        """加入成功后回复给加入者的房间快照

        Args:
            room: 房间ID
            peer_id: 加入者ID
            peers: 房间内其他成员
            peer_count: 房间成员总数（含加入者）
        """
        return {
            "type": MessageKind.ROOM_JOINED.value,
            "room": room,
            "peerId": peer_id,
            "peerCount": peer_count,
            "peers": list(peers),
            "timestamp": now_ms(),
        }

    @staticmethod
    def peers_available(peers: List[str], room: str) -> Dict[str, Any]:
        return {
            "type": MessageKind.PEERS_AVAILABLE.value,
            "peers": list(peers),
            "room": room,
        }

    @staticmethod
    def peer_joined(peer_id: str, peer_count: int) -> Dict[str, Any]:
        return {
            "type": MessageKind.PEER_JOINED.value,
            "peerId": peer_id,
            "peerCount": peer_count,
            "timestamp": now_ms(),
        }

    @staticmethod
    def peer_reconnect_needed(new_peer_id: str, peer_count: int) -> Dict[str, Any]:
        return {
            "type": MessageKind.PEER_RECONNECT_NEEDED.value,
            "newPeerId": new_peer_id,
            "peerCount": peer_count,
            "timestamp": now_ms(),
        }

    @staticmethod
    def peer_left(peer_id: str, peer_count: int) -> Dict[str, Any]:
        return {
            "type": MessageKind.PEER_LEFT.value,
            "peerId": peer_id,
            "peerCount": peer_count,
            "timestamp": now_ms(),
        }

    @staticmethod
    def error(error: str) -> Dict[str, Any]:
        return {
            "type": MessageKind.ERROR.value,
            "error": error,
            "timestamp": now_ms(),
        }

    # 客户端请求

    @staticmethod
    def join_room(room: str, peer_id: str) -> Dict[str, Any]:
        return JoinRoomMessage(room=room, peer_id=peer_id).to_dict()

    @staticmethod
    def leave_room(peer_id: str) -> Dict[str, Any]:
        return LeaveRoomMessage(peer_id=peer_id).to_dict()

    @staticmethod
    def relay(
        kind: MessageKind,
        from_peer: str,
        room: str,
        payload: Any,
        target_peer: str = BROADCAST,
    ) -> Dict[str, Any]:
        """构造一条协商消息

        Raises:
            ValueError: kind 不是 offer / answer / ice-candidate
        """
        if not kind.is_relay:
            raise ValueError(f"{kind.value} is not a relay message type")
        return {
            "type": kind.value,
            "fromPeer": from_peer,
            "room": room,
            "targetPeer": target_peer,
            "payload": payload,
        }
