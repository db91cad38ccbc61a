"""Hub 连接与房间注册表"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from websockets.protocol import State

from ..protocol import TransportFailure, encode_message
from ..utils import get_logger


class Connection:
    """客户端连接

    包装一个 WebSocket 连接。发送路径由连接自己的锁串行化，
    不同连接之间的发送互不影响。
    """

    def __init__(self, websocket, remote_address: Optional[Any] = None):
        self.websocket = websocket
        self.connection_id = f"conn_{uuid.uuid4().hex[:12]}"
        self.remote_address = remote_address
        self.connected = True
        self.connected_at = time.time()
        self.last_activity = time.monotonic()
        self._send_lock = asyncio.Lock()
        self._close_task: Optional[asyncio.Task] = None

        self.logger = get_logger("signal_hub.hub.connection")

    @property
    def is_open(self) -> bool:
        """连接是否仍可发送"""
        return self.connected and self.websocket.state is State.OPEN

    async def send_message(
        self, message: Dict[str, Any], timeout: Optional[float] = None
    ) -> bool:
        """发送消息到客户端

        Args:
            message: 要发送的消息
            timeout: 发送超时（秒），None 表示不限制

        Returns:
            是否发出；连接已关闭时返回 False

        Raises:
            TransportFailure: 写入出错或超时，连接随即标记为不可用
        """
        if not self.is_open:
            return False

        frame = encode_message(message)
        try:
            async with self._send_lock:
                if timeout:
                    await asyncio.wait_for(self.websocket.send(frame), timeout)
                else:
                    await self.websocket.send(frame)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.connected = False
            raise TransportFailure(
                f"{self} 发送 {message.get('type')} 失败",
                details={"error": repr(e)},
            ) from e

    def close_soon(self, code: int = 1011, reason: str = "Send failed") -> None:
        """在后台关闭 WebSocket

        不等待关闭握手，对端卡住时不会阻塞调用方。重复调用只关闭一次。
        """
        self.connected = False
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close(code, reason))

    async def _close(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            self.logger.debug(f"关闭 {self} 失败: {e}")

    def touch(self) -> None:
        """更新最近活动时间"""
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    def __repr__(self) -> str:
        return f"Connection({self.connection_id})"


@dataclass
class PeerEntry:
    """已加入房间的 Peer"""

    peer_id: str
    room_id: str
    connection: Connection


class PeerRegistry:
    """房间与 Peer 注册表

    维护同一批 Peer 的两个视图：
    - 房间索引：room_id -> {peer_id: None}（按加入顺序）
    - Peer 映射：peer_id -> PeerEntry(connection, room_id)

    每个方法都同时更新两个视图；本类不加锁，调用方（SignalingHub）
    负责把一次 join/leave/disconnect 的全部读写放在同一个临界区内。
    空房间在最后一个成员移除时立即删除。
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, None]] = {}
        self._peers: Dict[str, PeerEntry] = {}

        self.logger = get_logger("signal_hub.hub.registry")

    def add_peer(self, peer_id: str, room_id: str, connection: Connection) -> int:
        """注册 Peer 到房间

        调用前 peer_id 必须已不在注册表中。

        Args:
            peer_id: Peer ID
            room_id: 房间ID
            connection: Peer 的连接

        Returns:
            房间当前人数
        """
        if peer_id in self._peers:
            raise KeyError(f"peer {peer_id} is already registered")

        members = self._rooms.setdefault(room_id, {})
        if not members:
            self.logger.info(f"创建房间: {room_id}")
        members[peer_id] = None
        self._peers[peer_id] = PeerEntry(peer_id, room_id, connection)
        return len(members)

    def remove_peer(self, peer_id: str) -> Optional[Tuple[str, List[str]]]:
        """移除 Peer

        Args:
            peer_id: Peer ID

        Returns:
            (房间ID, 房间剩余成员)；Peer 不存在时返回 None
        """
        entry = self._peers.pop(peer_id, None)
        if entry is None:
            return None

        remaining: List[str] = []
        members = self._rooms.get(entry.room_id)
        if members is not None:
            members.pop(peer_id, None)
            remaining = list(members)
            if not members:
                del self._rooms[entry.room_id]
                self.logger.info(f"删除空房间: {entry.room_id}")

        return entry.room_id, remaining

    def get_peer(self, peer_id: str) -> Optional[PeerEntry]:
        return self._peers.get(peer_id)

    def has_peer(self, peer_id: str) -> bool:
        return peer_id in self._peers

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def room_members(self, room_id: str) -> List[str]:
        """房间成员（按加入顺序的副本），房间不存在时为空列表"""
        return list(self._rooms.get(room_id, ()))

    def room_connections(
        self, room_id: str, exclude: Optional[str] = None
    ) -> Dict[str, Connection]:
        """房间内成员的连接

        Args:
            room_id: 房间ID
            exclude: 排除的 Peer ID

        Returns:
            peer_id -> Connection
        """
        return {
            peer_id: self._peers[peer_id].connection
            for peer_id in self._rooms.get(room_id, ())
            if peer_id != exclude and peer_id in self._peers
        }

    def peers_for_connection(self, connection: Connection) -> List[str]:
        """查找绑定到某个连接的所有 Peer"""
        return [
            peer_id
            for peer_id, entry in self._peers.items()
            if entry.connection is connection
        ]

    def rooms(self) -> List[str]:
        return list(self._rooms)

    def clear(self) -> None:
        self._rooms.clear()
        self._peers.clear()

    @property
    def peer_count(self) -> int:
        return len(self._peers)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def get_stats(self) -> Dict[str, Any]:
        """获取注册表统计

        Returns:
            统计信息字典
        """
        return {
            "connectedPeers": len(self._peers),
            "activeRooms": len(self._rooms),
            "roomDetails": [
                {
                    "roomId": room_id,
                    "peerCount": len(members),
                    "peers": list(members),
                }
                for room_id, members in self._rooms.items()
            ],
        }
