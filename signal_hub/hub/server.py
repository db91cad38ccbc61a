"""Hub WebSocket 服务器"""

import asyncio
from typing import Any, Dict, Optional, Set

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .hub import SignalingHub
from .registry import Connection
from .router import MessageRouter
from ..monitor import HubMetrics
from ..protocol import MessageBuilder
from ..utils import HubConfig, get_logger

GREETING = "Connected to signaling server"


class HubServer:
    """Hub WebSocket 服务器

    每个连接一个消息循环：连接建立后发送 server-info，之后逐帧交给路由器处理；
    连接关闭或出错时统一走 SignalingHub.disconnect。
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[HubConfig] = None,
    ):
        self.config = config or HubConfig()
        self.host = host if host is not None else self.config.host
        self.port = port if port is not None else self.config.port

        # 核心组件
        self.metrics = HubMetrics()
        self.hub = SignalingHub(
            send_timeout=self.config.send_timeout,
            notify_delivery_failure=self.config.notify_delivery_failure,
            metrics=self.metrics,
        )
        self.router = MessageRouter(self.hub)

        # 服务器状态
        self.server: Optional[Server] = None
        self.running = False
        self._connections: Set[Connection] = set()
        self._tasks: Set[asyncio.Task] = set()

        self.logger = get_logger("signal_hub.hub.server")

    @property
    def bound_port(self) -> Optional[int]:
        """实际监听端口（port=0 时由系统分配）"""
        if not self.server:
            return None
        for sock in self.server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        """启动服务器"""
        if self.running:
            self.logger.warning("服务器已经在运行")
            return

        try:
            self.logger.info(f"启动 Signal Hub: {self.host}:{self.port}")

            self.server = await serve(
                self._handle_client,
                self.host,
                self.port,
                max_size=self.config.max_message_size,
                ping_interval=self.config.ws_ping_interval,
                ping_timeout=self.config.ws_ping_timeout,
                close_timeout=self.config.ws_close_timeout,
            )

            self.running = True
            self.logger.info(f"Signal Hub 启动成功，端口 {self.bound_port}")

            if self.config.idle_timeout > 0:
                self._spawn(self._idle_checker())
            if self.config.stats_interval > 0:
                self._spawn(self._stats_reporter())

        except Exception as e:
            self.logger.error(f"启动服务器失败: {e}")
            raise

    async def stop(self) -> None:
        """停止服务器

        先停止接受新连接，再关闭所有已有连接，最后清空注册表。
        """
        if not self.running:
            return

        stats = self.hub.get_stats()
        self.logger.info(
            f"停止 Signal Hub (peers: {stats['connectedPeers']}, "
            f"rooms: {stats['activeRooms']}, connections: {len(self._connections)})"
        )
        self.running = False

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        try:
            if self.server:
                self.server.close(close_connections=False)

            close_tasks = [
                connection.websocket.close(code=1001, reason="Server shutdown")
                for connection in list(self._connections)
            ]
            if close_tasks:
                results = await asyncio.gather(*close_tasks, return_exceptions=True)
                for result in results:
                    if isinstance(result, Exception):
                        self.logger.debug(f"关闭客户端连接失败: {result}")

            if self.server:
                await self.server.wait_closed()
                self.server = None

            self.logger.info("Signal Hub 已停止")

        finally:
            await self.hub.clear()
            self._connections.clear()

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """处理客户端连接

        Args:
            websocket: WebSocket 连接
        """
        connection = Connection(websocket, websocket.remote_address)
        self._connections.add(connection)
        self.metrics.record_connection_opened()
        self.logger.info(f"新连接 {connection} 来自 {connection.remote_address}")

        try:
            await self.hub.send(connection, MessageBuilder.server_info(GREETING))

            async for raw_message in websocket:
                connection.touch()
                await self.router.route_raw(raw_message, connection)

        except ConnectionClosed as e:
            self.logger.debug(
                f"{connection} 连接异常关闭 (code: {e.rcvd.code if e.rcvd else None})"
            )
        except Exception as e:
            self.logger.error(f"处理 {connection} 失败: {e}")

        finally:
            connection.connected = False
            self._connections.discard(connection)
            self.metrics.record_connection_closed()
            removed = await self.hub.disconnect(connection)
            self.logger.info(
                f"连接关闭 {connection}"
                + (f"，移除 Peer: {', '.join(removed)}" if removed else "")
            )

    async def _idle_checker(self) -> None:
        """空闲连接检查任务"""
        timeout = self.config.idle_timeout
        interval = max(min(timeout / 2, 30.0), 0.05)

        while self.running:
            try:
                await asyncio.sleep(interval)

                idle = [
                    connection
                    for connection in list(self._connections)
                    if connection.idle_for() > timeout
                ]

                # 关闭后由 _handle_client 的 finally 走统一离开流程
                for connection in idle:
                    self.logger.warning(f"{connection} 空闲超时，断开连接")
                    try:
                        await connection.websocket.close(
                            code=1001, reason="Idle timeout"
                        )
                    except Exception as e:
                        self.logger.debug(f"关闭 {connection} 失败: {e}")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"空闲检查出错: {e}")

    async def _stats_reporter(self) -> None:
        """定期输出统计信息"""
        while self.running:
            await asyncio.sleep(self.config.stats_interval)
            stats = self.hub.get_stats()
            self.logger.info(
                f"服务器状态: peers {stats['connectedPeers']} | "
                f"rooms {stats['activeRooms']} | "
                f"connections {len(self._connections)}"
            )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def get_stats(self) -> Dict[str, Any]:
        """获取服务器统计信息

        Returns:
            统计信息字典
        """
        stats = self.hub.get_stats()
        stats["connections"] = len(self._connections)
        stats["metrics"] = self.metrics.snapshot()
        stats["server"] = {
            "running": self.running,
            "host": self.host,
            "port": self.bound_port or self.port,
        }
        return stats


async def start_hub_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    config: Optional[HubConfig] = None,
) -> HubServer:
    """启动 Hub 服务器

    Args:
        host: 监听地址
        port: 监听端口
        config: 配置

    Returns:
        Hub 服务器实例
    """
    server = HubServer(host, port, config)
    await server.start()
    return server
