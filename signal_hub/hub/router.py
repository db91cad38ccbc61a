"""Hub 消息路由器"""

from typing import Union

from .hub import SignalingHub
from .registry import Connection
from ..protocol import (
    InboundMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    MessageBuilder,
    RelayMessage,
    SignalingError,
    parse_message,
)
from ..utils import get_logger


class MessageRouter:
    """消息路由器

    把一帧原始消息解析后分发到 SignalingHub 的对应操作。
    解析或协议错误只回复给发送者，不关闭连接、不改变注册表。
    """

    def __init__(self, hub: SignalingHub):
        self.hub = hub
        self.logger = get_logger("signal_hub.hub.router")

    async def route_raw(self, raw: Union[str, bytes], connection: Connection) -> bool:
        """路由一帧原始消息

        Args:
            raw: 原始消息帧
            connection: 发送者连接

        Returns:
            是否处理成功
        """
        try:
            message = parse_message(raw)
            await self.route_message(message, connection)
            return True

        except SignalingError as e:
            self.logger.warning(f"{connection} 消息处理失败: {e.message}")
            await self.send_error(connection, e.message)
            return False

        except Exception as e:
            self.logger.exception(f"{connection} 消息处理异常: {e}")
            await self.send_error(connection, "Internal server error")
            return False

    async def route_message(
        self, message: InboundMessage, connection: Connection
    ) -> None:
        """分发已解析的消息

        Args:
            message: 入站消息
            connection: 发送者连接
        """
        if isinstance(message, JoinRoomMessage):
            self.logger.debug(
                f"join-room: peer {message.peer_id} room {message.room} ({connection})"
            )
            await self.hub.join(connection, message.room, message.peer_id)

        elif isinstance(message, LeaveRoomMessage):
            self.logger.debug(f"leave-room: peer {message.peer_id} ({connection})")
            await self.hub.leave(message.peer_id, connection)

        elif isinstance(message, RelayMessage):
            self.logger.debug(
                f"{message.kind.value}: {message.from_peer} -> "
                f"{message.target_peer or 'broadcast'} room {message.room}"
            )
            await self.hub.relay(connection, message)

    async def send_error(self, connection: Connection, error: str) -> bool:
        """回复 error 消息"""
        self.hub.metrics.record_error_sent()
        return await self.hub.send(connection, MessageBuilder.error(error))
