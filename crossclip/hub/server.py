"""Hub WebSocket 服务器"""

import asyncio
import json
import signal
import sys
import time
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.http11 import Request, Response

from .connection import Connection
from .manager import Hub
from .router import MessageHandler
from ..utils import RelayConfig, get_logger


class RelayServer:
    """中继服务器

    在同一个监听端口上提供：
    - WebSocket 升级路径（默认 /ws）
    - 健康检查路径（默认 /health），返回当前连接数
    """

    def __init__(self, config: Optional[RelayConfig] = None, hub: Optional[Hub] = None):
        self.config = config or RelayConfig()
        self.config.validate()

        # 核心组件
        self.hub = hub or Hub(
            read_timeout=self.config.read_timeout,
            sweep_interval=self.config.sweep_interval,
            max_connections=self.config.max_connections,
        )
        self.handler = MessageHandler(self.hub)

        # 服务器状态
        self.server: Optional[Server] = None
        self.running = False

        self.logger = get_logger("crossclip.hub.server")

    @property
    def port(self) -> int:
        """实际监听的端口（配置端口为 0 时由系统分配）"""
        if self.server is not None:
            for sock in self.server.sockets:
                return sock.getsockname()[1]
        return self.config.port

    async def start(self) -> None:
        """启动服务器"""
        if self.running:
            self.logger.warning("服务器已经在运行")
            return

        await self.hub.start()
        try:
            self.server = await websockets.serve(
                self._handle_client,
                self.config.host,
                self.config.port,
                process_request=self._process_request,
                ping_interval=None,  # 由写任务负责 ping
                max_size=self.config.max_message_size,
                write_limit=self.config.write_buffer_size,
                close_timeout=self.config.write_timeout,
            )
        except OSError as e:
            self.logger.error(f"启动服务器失败: {e}")
            await self.hub.stop()
            raise

        self.running = True
        self.logger.info(f"服务器启动在 {self.config.host}:{self.port}")
        self.logger.info(f"WebSocket 路径: {self.config.ws_path}")

    async def stop(self) -> None:
        """停止服务器"""
        if not self.running:
            return

        self.logger.info("停止服务器")
        self.running = False

        try:
            if self.server:
                self.server.close()
                await self.server.wait_closed()
                self.server = None
        finally:
            await self.hub.stop()

        self.logger.info("服务器已停止")

    async def serve_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """启动服务器并一直运行，直到收到停止信号

        Args:
            stop_event: 外部停止事件，为空时监听 SIGINT / SIGTERM
        """
        stop_event = stop_event or asyncio.Event()

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop_event.set)
                except (NotImplementedError, RuntimeError):
                    self.logger.debug(f"当前环境不支持信号处理: {sig}")

        await self.start()
        try:
            await stop_event.wait()
            self.logger.info("收到停止信号，正在关闭服务器...")
        finally:
            await self.stop()

    # ===========================================
    # HTTP 请求（升级前）
    # ===========================================

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        path = urlsplit(request.path).path

        if path == self.config.health_path:
            return self._health_response(connection)

        if path != self.config.ws_path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

        # 继续 WebSocket 握手
        return None

    def _health_response(self, connection: ServerConnection) -> Response:
        body = {
            "status": "ok",
            "timestamp": int(time.time()),
            "clients": self.hub.live_count(),
        }
        response = connection.respond(HTTPStatus.OK, json.dumps(body) + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    # ===========================================
    # WebSocket 连接
    # ===========================================

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """处理客户端连接

        读任务在当前协程中运行，写任务作为独立任务运行；
        读任务结束时连接已经注销，写任务会随发件箱关闭而退出。
        """
        connection = Connection(websocket, outbox_capacity=self.config.outbox_capacity)
        if not await self.hub.register(connection):
            # 已达连接数上限
            await websocket.close(code=1013, reason="Server overloaded")
            return
        self.logger.debug(f"{connection} 来自 {connection.remote_address}")

        writer = asyncio.create_task(
            connection.write_pump(
                self.hub,
                ping_interval=self.config.ping_interval,
                write_timeout=self.config.write_timeout,
            )
        )

        try:
            await connection.read_pump(
                self.hub, self.handler, read_timeout=self.config.read_timeout
            )
        finally:
            try:
                await asyncio.wait_for(writer, timeout=self.config.write_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"{connection} 写任务未能及时退出，已取消")

    def get_stats(self) -> dict:
        """获取服务器统计信息"""
        return {
            "server": {
                "running": self.running,
                "host": self.config.host,
                "port": self.port,
                "ws_path": self.config.ws_path,
                "max_connections": self.config.max_connections,
            },
            "hub": self.hub.get_stats(),
        }


async def run_server(config: Optional[RelayConfig] = None) -> None:
    """运行中继服务器直到收到停止信号

    Args:
        config: 服务器配置
    """
    server = RelayServer(config)
    await server.serve_forever()
