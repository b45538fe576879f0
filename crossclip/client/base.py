"""CrossClip 客户端

连接中继服务器、注册分组并收发不透明的加密载荷。加解密由调用方完成，
客户端只负责协议交互。
"""

import asyncio
import hashlib
import inspect
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from ..exceptions import ClientError, DecodeError, TransportError, ValidationError
from ..protocol import (
    CopyFrame,
    InboundType,
    MessageFrame,
    OutboundType,
    RegisterFrame,
    decode_burst,
    frame_type_of,
)
from ..utils import get_logger, short_key


def key_hash(secret: str) -> str:
    """由共享密钥计算分组标识（与浏览器端一致的 MD5 十六进制摘要）"""
    return hashlib.md5(secret.encode("utf-8")).hexdigest()


@dataclass
class PendingReply:
    """已发出、服务器必定会应答一次的请求

    服务器按发送顺序处理同一连接上的帧，因此应答与请求按先进先出对应。
    会被正常转发的 message 帧没有应答，不会登记在这里。
    """

    request: InboundType
    expected: Optional[OutboundType] = None  # 为空表示只可能收到 error
    future: Optional[asyncio.Future] = None


class RelayClient:
    """中继客户端

    用户装饰器：
    - @on_message(): 处理同组转发来的 message 帧
    - @on_copy(): 处理同组转发来的 copy 帧
    - @on_error(): 处理没有调用方在等待的 error 帧

    Usage:
        client = RelayClient("ws://localhost:8080/ws")

        @client.on_message()
        async def handle(encrypted_message: str):
            print(decrypt(encrypted_message))

        await client.connect()
        await client.register(key_hash("shared secret"))
        await client.send_message(encrypt("hello"))
    """

    def __init__(self, hub_url: str):
        self.hub_url = hub_url
        self.websocket: Optional[ClientConnection] = None
        self.connected = False
        self.key_hash = ""

        # 服务器处理完已发送的帧后连接所在的分组
        self._group_key = ""

        # 用户自定义处理器（通过装饰器注册）
        self._message_handlers: List[Callable] = []
        self._copy_handlers: List[Callable] = []
        self._error_handlers: List[Callable] = []

        self._pending: Deque[PendingReply] = deque()
        self._receiver: Optional[asyncio.Task] = None

        self.logger = get_logger("crossclip.client")

    # ===========================================
    # 装饰器
    # ===========================================

    def on_message(self):
        """message 帧处理器装饰器，处理函数接收 encrypted_message"""

        def decorator(func: Callable):
            self._message_handlers.append(func)
            return func

        return decorator

    def on_copy(self):
        """copy 帧处理器装饰器，处理函数接收 encrypted_content 和 content_type"""

        def decorator(func: Callable):
            self._copy_handlers.append(func)
            return func

        return decorator

    def on_error(self):
        """error 帧处理器装饰器，处理函数接收错误描述"""

        def decorator(func: Callable):
            self._error_handlers.append(func)
            return func

        return decorator

    # ===========================================
    # 连接
    # ===========================================

    async def connect(self) -> None:
        """连接到中继服务器"""
        try:
            self.logger.info(f"连接到服务器: {self.hub_url}")
            self.websocket = await websockets.connect(self.hub_url)
        except (OSError, InvalidHandshake) as e:
            self.logger.error(f"连接失败: {e}")
            raise TransportError(f"Failed to connect to {self.hub_url}: {e}")

        self.connected = True
        self._receiver = asyncio.create_task(self.receive_loop())
        self.logger.info("连接成功")

    async def disconnect(self) -> None:
        """断开连接"""
        if not self.websocket:
            return

        try:
            await self.websocket.close()
            if self._receiver:
                await self._receiver
        finally:
            self.connected = False
            self.websocket = None
            self._receiver = None
            self._group_key = ""
            self._fail_pending(TransportError("Disconnected"))
            self.logger.info("连接已断开")

    # ===========================================
    # 请求
    # ===========================================

    async def register(self, key: str, timeout: float = 10.0) -> Dict[str, Any]:
        """注册到分组并等待 register_success

        Raises:
            ValidationError: 分组标识为空
            ClientError: 服务器返回 error 帧
            asyncio.TimeoutError: 超时未收到应答
        """
        if not key:
            raise ValidationError("keyHash must not be empty")

        pending = PendingReply(InboundType.REGISTER, OutboundType.REGISTER_SUCCESS)
        future = self._track(pending)
        await self._send_tracked(RegisterFrame(key_hash=key).to_json(), pending)
        self._group_key = key

        reply = await asyncio.wait_for(future, timeout=timeout)
        self.key_hash = key
        self.logger.info(f"注册成功，分组: {short_key(key)}")
        return reply

    async def send_message(self, encrypted_message: str) -> None:
        """向同组其他客户端转发一条文本载荷

        服务器不确认成功转发的 message 帧；被拒绝时的 error 帧交给 on_error 处理器。
        """
        frame = MessageFrame(key_hash=self.key_hash, encrypted_message=encrypted_message)
        if self._group_key and frame.key_hash == self._group_key:
            await self._send(frame.to_json())
            return

        # 未注册或密钥与分组不一致，服务器会回一条 error 帧
        await self._send_tracked(frame.to_json(), PendingReply(InboundType.MESSAGE))

    async def send_copy(
        self, encrypted_content: str, content_type: str = "text", timeout: float = 10.0
    ) -> Dict[str, Any]:
        """向同组其他客户端转发一条带类型的载荷并等待 copy_response"""
        frame = CopyFrame(
            key_hash=self.key_hash,
            encrypted_content=encrypted_content,
            content_type=content_type,
        )
        pending = PendingReply(InboundType.COPY, OutboundType.COPY_RESPONSE)
        future = self._track(pending)
        await self._send_tracked(frame.to_json(), pending)
        return await asyncio.wait_for(future, timeout=timeout)

    def _track(self, pending: PendingReply) -> asyncio.Future:
        pending.future = asyncio.get_running_loop().create_future()
        return pending.future

    async def _send_tracked(self, raw: str, pending: PendingReply) -> None:
        """发送一条会收到应答的帧

        超时的请求仍然留在队列中，用来吸收迟到的应答。
        """
        self._pending.append(pending)
        try:
            await self._send(raw)
        except TransportError:
            self._pending.remove(pending)
            raise

    async def _send(self, raw: str) -> None:
        if not self.connected or not self.websocket:
            raise TransportError("Client is not connected")
        try:
            await self.websocket.send(raw)
        except ConnectionClosed as e:
            self.connected = False
            raise TransportError(f"Connection closed: {e}")

    # ===========================================
    # 接收
    # ===========================================

    async def receive_loop(self) -> None:
        """消息监听循环"""
        try:
            async for raw in self.websocket:
                try:
                    frames = decode_burst(raw)
                except DecodeError as e:
                    self.logger.warning(f"解析消息失败: {e.message}")
                    continue

                for data in frames:
                    await self._dispatch(data)

        except ConnectionClosed:
            self.logger.info("WebSocket 连接已关闭")
        finally:
            self.connected = False
            self._fail_pending(TransportError("Connection closed"))

    async def _dispatch(self, data: Dict[str, Any]) -> None:
        frame_type = frame_type_of(data)

        if frame_type == OutboundType.MESSAGE:
            await self._call_handlers(self._message_handlers, data.get("encryptedMessage", ""))
        elif frame_type == OutboundType.COPY:
            await self._call_handlers(
                self._copy_handlers,
                data.get("encryptedContent", ""),
                data.get("contentType", ""),
            )
        elif frame_type in (OutboundType.REGISTER_SUCCESS, OutboundType.COPY_RESPONSE):
            self._resolve(frame_type, data)
        elif frame_type == OutboundType.ERROR:
            message = data.get("message", "")
            self.logger.warning(f"收到错误: {message}")
            if not self._reject(ClientError(message)):
                await self._call_handlers(self._error_handlers, message)
        else:
            self.logger.warning(f"未知消息类型: {data.get('type')}")

    def _resolve(self, frame_type: OutboundType, data: Dict[str, Any]) -> None:
        if not self._pending:
            self.logger.debug(f"未匹配的应答: {frame_type.value}")
            return

        pending = self._pending.popleft()
        future = pending.future
        if pending.expected != frame_type:
            self.logger.warning(
                f"应答顺序不一致: {pending.request.value} 请求收到 {frame_type.value}"
            )
            if future is not None and not future.done():
                future.set_exception(ClientError(f"unexpected reply: {frame_type.value}"))
            return

        if future is not None and not future.done():
            future.set_result(data)

    def _reject(self, error: ClientError) -> bool:
        """把 error 帧交给对应的请求

        Returns:
            是否有调用方在等待这条错误
        """
        if not self._pending:
            return False

        future = self._pending.popleft().future
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def _fail_pending(self, error: Exception) -> None:
        while self._pending:
            future = self._pending.popleft().future
            if future is not None and not future.done():
                future.set_exception(error)

    async def _call_handlers(self, handlers: List[Callable], *args: Any) -> None:
        for handler in handlers:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(f"处理器出错: {e!r}")
