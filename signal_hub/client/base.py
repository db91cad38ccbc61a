"""Signal Hub 客户端"""

import asyncio
import inspect
import json
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from ..protocol import BROADCAST, MessageBuilder, MessageKind, encode_message
from ..utils import get_logger


class SignalingClient:
    """信令客户端

    连接 Hub、加入房间并收发协商消息。收到的每条消息都会：
    - 放入 inbox 队列（可用 next_message 等待；队列满时丢弃最旧的消息，
      inbox_size=None 时不保留）
    - 分发给通过 @client.on(type) 注册的处理器

    Usage:
        client = SignalingClient("ws://localhost:3001", "alice")

        @client.on("peer-joined")
        async def handle_peer_joined(message):
            await client.send_offer(message["peerId"], {"sdp": "..."})

        await client.connect()
        await client.join("room-1")
    """

    def __init__(
        self, hub_url: str, peer_id: str, inbox_size: Optional[int] = 256
    ):
        self.hub_url = hub_url
        self.peer_id = peer_id
        self.room: Optional[str] = None

        self.websocket: Optional[ClientConnection] = None
        self.connected = False
        self.inbox: Optional["asyncio.Queue[Dict[str, Any]]"] = (
            asyncio.Queue(maxsize=inbox_size) if inbox_size else None
        )

        self._handlers: Dict[str, List[Callable]] = {}
        self._receive_task: Optional[asyncio.Task] = None

        self.logger = get_logger("signal_hub.client")

    # ===========================================
    # 处理器注册
    # ===========================================

    def on(self, message_type: str = "*"):
        """消息处理器装饰器

        Args:
            message_type: 消息类型，"*" 表示所有消息
        """

        def decorator(func: Callable):
            self._handlers.setdefault(message_type, []).append(func)
            return func

        return decorator

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        handlers = self._handlers.get(message.get("type"), []) + self._handlers.get(
            "*", []
        )
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(message)
                else:
                    handler(message)
            except Exception as e:
                self.logger.error(f"{message.get('type')} 处理器出错: {e}")

    # ===========================================
    # 连接
    # ===========================================

    async def connect(self) -> None:
        """连接到 Hub"""
        try:
            self.logger.info(f"连接到 Hub: {self.hub_url}")
            self.websocket = await connect(self.hub_url)
            self.connected = True
            self._receive_task = asyncio.create_task(self.receive_loop())
        except Exception as e:
            self.logger.error(f"连接失败: {e}")
            self.connected = False
            raise

    async def disconnect(self) -> None:
        """断开连接"""
        if self.websocket:
            try:
                await self.websocket.close()
            except Exception as e:
                self.logger.debug(f"关闭连接出错: {e}")
        if self._receive_task:
            await asyncio.gather(self._receive_task, return_exceptions=True)
            self._receive_task = None
        self.connected = False

    async def receive_loop(self) -> None:
        """消息接收循环"""
        try:
            async for raw in self.websocket:
                try:
                    message = json.loads(raw)
                except ValueError:
                    self.logger.warning(f"收到无法解析的消息: {raw!r}")
                    continue
                self._enqueue(message)
                await self._dispatch(message)
        except ConnectionClosed:
            self.logger.debug("连接已关闭")
        finally:
            self.connected = False

    def _enqueue(self, message: Dict[str, Any]) -> None:
        if self.inbox is None:
            return
        if self.inbox.full():
            dropped = self.inbox.get_nowait()
            self.logger.debug(f"inbox 已满，丢弃 {dropped.get('type')}")
        self.inbox.put_nowait(message)

    async def next_message(
        self, message_type: Optional[str] = None, timeout: float = 5.0
    ) -> Dict[str, Any]:
        """等待下一条（指定类型的）消息

        类型不匹配的消息会被丢弃。

        Raises:
            asyncio.TimeoutError: 超时未收到
            RuntimeError: 客户端未保留 inbox
        """
        if self.inbox is None:
            raise RuntimeError("inbox is disabled (inbox_size=None)")

        async def _wait():
            while True:
                message = await self.inbox.get()
                if message_type is None or message.get("type") == message_type:
                    return message

        return await asyncio.wait_for(_wait(), timeout)

    # ===========================================
    # 发送
    # ===========================================

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.connected or not self.websocket:
            raise RuntimeError("not connected to hub")
        await self.websocket.send(encode_message(message))

    async def send_raw(self, frame: str) -> None:
        """发送原始文本帧"""
        if not self.connected or not self.websocket:
            raise RuntimeError("not connected to hub")
        await self.websocket.send(frame)

    async def join(self, room: str) -> None:
        self.room = room
        await self.send(MessageBuilder.join_room(room, self.peer_id))

    async def leave(self) -> None:
        await self.send(MessageBuilder.leave_room(self.peer_id))
        self.room = None

    async def _relay(self, kind: MessageKind, target_peer: str, payload: Any) -> None:
        if self.room is None:
            raise RuntimeError("join a room before sending negotiation messages")
        await self.send(
            MessageBuilder.relay(kind, self.peer_id, self.room, payload, target_peer)
        )

    async def send_offer(self, target_peer: str, payload: Any) -> None:
        await self._relay(MessageKind.OFFER, target_peer, payload)

    async def send_answer(self, target_peer: str, payload: Any) -> None:
        await self._relay(MessageKind.ANSWER, target_peer, payload)

    async def send_ice_candidate(
        self, payload: Any, target_peer: str = BROADCAST
    ) -> None:
        await self._relay(MessageKind.ICE_CANDIDATE, target_peer, payload)
