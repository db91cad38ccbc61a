"""Hub 房间协议

SignalingHub 独占注册表，所有 join / leave / disconnect / relay 操作
先在同一把 asyncio.Lock 下完成注册表读写并生成待发送列表，
释放锁之后再并发发送。
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .registry import Connection, PeerRegistry
from ..monitor import HubMetrics
from ..protocol import (
    DeliveryFailure,
    MessageBuilder,
    RelayMessage,
    TransportFailure,
    ValidationError,
)
from ..utils import get_logger


@dataclass
class Delivery:
    """一条待发送消息"""

    connection: Connection
    message: Dict[str, Any]
    peer_id: Optional[str] = None


def _is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and value != ""


class SignalingHub:
    """信令 Hub

    维护房间/Peer 注册表并执行加入、离开、断开和协商消息转发。
    """

    def __init__(
        self,
        send_timeout: Optional[float] = None,
        notify_delivery_failure: bool = False,
        metrics: Optional[HubMetrics] = None,
    ):
        self.registry = PeerRegistry()
        self.send_timeout = send_timeout
        self.notify_delivery_failure = notify_delivery_failure
        self.metrics = metrics or HubMetrics()

        self._lock = asyncio.Lock()
        self.logger = get_logger("signal_hub.hub.hub")

    # ===========================================
    # 房间协议
    # ===========================================

    async def join(self, connection: Connection, room: Any, peer_id: Any) -> int:
        """Peer 加入房间

        已在某个房间中的 Peer 先执行离开流程，保证同一时刻只属于一个房间。

        Args:
            connection: 发起加入的连接
            room: 房间ID
            peer_id: Peer ID

        Returns:
            加入后房间人数

        Raises:
            ValidationError: room 或 peer_id 不是非空字符串
        """
        if not _is_valid_id(room) or not _is_valid_id(peer_id):
            raise ValidationError(details={"room": room, "peerId": peer_id})

        async with self._lock:
            deliveries: List[Delivery] = []

            rejoin = self.registry.has_peer(peer_id)
            if rejoin:
                deliveries.extend(self._leave_locked(peer_id))

            peer_count = self.registry.add_peer(peer_id, room, connection)
            others = self.registry.room_connections(room, exclude=peer_id)
            other_ids = list(others)

            for other_id, other_connection in others.items():
                deliveries.append(
                    Delivery(
                        other_connection,
                        MessageBuilder.peer_joined(peer_id, peer_count),
                        other_id,
                    )
                )

            deliveries.append(
                Delivery(
                    connection,
                    MessageBuilder.room_joined(room, peer_id, other_ids, peer_count),
                    peer_id,
                )
            )

            if peer_count > 1:
                deliveries.append(
                    Delivery(
                        connection,
                        MessageBuilder.peers_available(other_ids, room),
                        peer_id,
                    )
                )
                for other_id, other_connection in others.items():
                    deliveries.append(
                        Delivery(
                            other_connection,
                            MessageBuilder.peer_reconnect_needed(peer_id, peer_count),
                            other_id,
                        )
                    )

            self.metrics.record_join(rejoin=rejoin)

        self.logger.info(f"Peer {peer_id} 加入房间 {room}，房间人数: {peer_count}")
        await self._deliver(deliveries)
        return peer_count

    async def leave(self, peer_id: Any, connection: Optional[Connection] = None) -> bool:
        """Peer 离开房间

        Peer 不存在时不做任何事。指定 connection 时，只有该 Peer 确实绑定在
        这个连接上才会移除。

        Args:
            peer_id: Peer ID
            connection: 发起离开的连接

        Returns:
            是否移除了 Peer
        """
        if not _is_valid_id(peer_id):
            return False

        async with self._lock:
            entry = self.registry.get_peer(peer_id)
            if entry is None:
                return False
            if connection is not None and entry.connection is not connection:
                self.logger.warning(
                    f"忽略 {connection} 对 Peer {peer_id} 的离开请求：Peer 属于其他连接"
                )
                return False
            deliveries = self._leave_locked(peer_id)

        await self._deliver(deliveries)
        return True

    async def disconnect(self, connection: Connection) -> List[str]:
        """连接关闭或出错后的清理

        与显式离开走同一个离开流程。

        Args:
            connection: 已关闭的连接

        Returns:
            被移除的 Peer ID 列表
        """
        async with self._lock:
            peer_ids = self.registry.peers_for_connection(connection)
            deliveries: List[Delivery] = []
            for peer_id in peer_ids:
                self.logger.info(f"Peer {peer_id} 断开连接")
                deliveries.extend(self._leave_locked(peer_id))

        await self._deliver(deliveries)
        return peer_ids

    def _leave_locked(self, peer_id: str) -> List[Delivery]:
        """离开流程（调用方必须持有锁）

        Returns:
            需要发送给房间剩余成员的 peer-left 通知
        """
        removed = self.registry.remove_peer(peer_id)
        if removed is None:
            return []

        room_id, remaining = removed
        peer_count = len(remaining)
        self.metrics.record_leave()
        self.logger.info(f"Peer {peer_id} 离开房间 {room_id}，房间人数: {peer_count}")

        return [
            Delivery(
                self.registry.get_peer(other_id).connection,
                MessageBuilder.peer_left(peer_id, peer_count),
                other_id,
            )
            for other_id in remaining
            if self.registry.has_peer(other_id)
        ]

    # ===========================================
    # 协商消息转发
    # ===========================================

    async def relay(self, connection: Connection, message: RelayMessage) -> int:
        """转发 offer / answer / ice-candidate

        指定目标时只投递给该目标；目标为 "broadcast" 时投递给发送者所声明房间
        内除发送者外的所有成员。消息原样转发。

        Args:
            connection: 发送者连接
            message: 协商消息

        Returns:
            成功投递的目标数

        Raises:
            DeliveryFailure: 定向目标不存在或连接已关闭，且启用了失败通知
        """
        kind = message.kind.value
        dropped: Optional[DeliveryFailure] = None

        async with self._lock:
            if message.is_broadcast:
                room = message.room if _is_valid_id(message.room) else None
                targets = (
                    self.registry.room_connections(room, exclude=message.from_peer)
                    if room
                    else {}
                )
                deliveries = [
                    Delivery(target, message.to_dict(), target_id)
                    for target_id, target in targets.items()
                ]
            else:
                target = message.target_peer
                entry = (
                    self.registry.get_peer(target) if _is_valid_id(target) else None
                )
                if entry is not None and entry.connection.is_open:
                    deliveries = [
                        Delivery(entry.connection, message.to_dict(), target)
                    ]
                else:
                    deliveries = []
                    dropped = DeliveryFailure(
                        str(target),
                        details={"type": kind, "fromPeer": message.from_peer},
                    )

        results = await self._deliver(deliveries)
        delivered = sum(1 for ok in results if ok)
        self.metrics.record_relay(attempted=len(deliveries), delivered=delivered)

        if dropped is not None:
            self.metrics.record_drop()
            self.logger.warning(f"丢弃 {kind}: {dropped.message}")
            if self.notify_delivery_failure:
                raise dropped
        elif message.is_broadcast:
            self.logger.debug(
                f"广播 {kind} 到房间 {message.room}: {delivered}/{len(deliveries)}"
            )
        else:
            self.logger.debug(f"转发 {kind} 到 Peer {message.target_peer}")

        return delivered

    # ===========================================
    # 发送
    # ===========================================

    async def send(self, connection: Connection, message: Dict[str, Any]) -> bool:
        """直接发送一条消息到某个连接（不涉及注册表）"""
        results = await self._deliver([Delivery(connection, message)])
        return results[0]

    async def _deliver(self, deliveries: List[Delivery]) -> List[bool]:
        """并发发送，单个发送失败不影响其他发送

        发送失败（含超时）的连接会被关闭，并走统一的断开流程移出注册表。
        """
        if not deliveries:
            return []

        results = await asyncio.gather(
            *(
                delivery.connection.send_message(delivery.message, self.send_timeout)
                for delivery in deliveries
            ),
            return_exceptions=True,
        )

        outcomes = []
        failures: Dict[Connection, TransportFailure] = {}
        for delivery, result in zip(deliveries, results):
            ok = result is True
            if isinstance(result, TransportFailure):
                failures.setdefault(delivery.connection, result)
            elif isinstance(result, Exception):
                self.logger.error(
                    f"发送 {delivery.message.get('type')} 到 "
                    f"{delivery.peer_id or delivery.connection} 出错: {result}"
                )
            self.metrics.record_send(ok)
            outcomes.append(ok)

        for connection, failure in failures.items():
            await self._drop_connection(connection, failure)
        return outcomes

    async def _drop_connection(
        self, connection: Connection, failure: TransportFailure
    ) -> None:
        """关闭发送失败的连接并走统一离开流程"""
        connection.close_soon()
        removed = await self.disconnect(connection)
        self.logger.warning(
            f"{failure.message}: {failure.details.get('error')}"
            + (f"，移除 Peer: {', '.join(removed)}" if removed else "")
        )

    # ===========================================
    # 查询
    # ===========================================

    def get_stats(self) -> Dict[str, Any]:
        """获取注册表统计"""
        return self.registry.get_stats()

    async def clear(self) -> None:
        """清空注册表（服务器关闭时使用）"""
        async with self._lock:
            self.registry.clear()
