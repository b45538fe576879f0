"""Hub 消息处理器

解析每条入站帧并决定调用哪个 Hub 操作。入站类型是封闭枚举，
每个成员对应一个处理函数，构造时检查没有遗漏。
"""

from typing import Awaitable, Callable, Dict, Union

from .connection import Connection
from .manager import Hub
from ..exceptions import ClientError, DecodeError, StateError, ValidationError
from ..protocol import (
    CopyFrame,
    CopyResponse,
    ErrorReply,
    InboundFrame,
    InboundType,
    MessageFrame,
    OutboundFrame,
    RegisterFrame,
    RegisterSuccess,
    RelayedCopy,
    RelayedMessage,
    parse_frame,
)
from ..utils import get_logger, short_key


class MessageHandler:
    """协议处理器

    所有校验失败都不是致命错误：向发送者回一条 error 帧，连接保持打开。
    """

    def __init__(self, hub: Hub):
        self.hub = hub
        self.logger = get_logger("crossclip.hub.router")

        self._handlers: Dict[
            InboundType, Callable[[Connection, InboundFrame], Awaitable[None]]
        ] = {
            InboundType.REGISTER: self._handle_register,
            InboundType.MESSAGE: self._handle_message,
            InboundType.COPY: self._handle_copy,
        }

        missing = set(InboundType) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for inbound types: {sorted(t.value for t in missing)}")

    async def handle(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """处理一条原始入站帧

        只有成功解析的帧才刷新连接的活跃时间。

        Args:
            connection: 发送者连接
            raw: 原始帧
        """
        try:
            frame = parse_frame(raw)
            connection.touch()
            await self._handlers[frame.frame_type](connection, frame)
        except DecodeError as e:
            self.hub.metrics.record_decode_error()
            self.logger.warning(f"{connection} 解析消息失败，已跳过: {e.message}")
        except ClientError as e:
            self.hub.metrics.record_protocol_error()
            self.logger.debug(f"{connection} 请求被拒绝: {e.message}")
            await self.reply(connection, ErrorReply.from_error(e))

    async def reply(self, connection: Connection, frame: OutboundFrame) -> None:
        """向发送者自己回一条帧

        发件箱已满时发送者同样被视为无响应并注销。
        """
        if not connection.send_frame(frame):
            if not connection.closed:
                self.hub.metrics.record_eviction()
            await self.hub.unregister(connection, reason="backpressure")

    # ===========================================
    # 各类型处理函数
    # ===========================================

    async def _handle_register(self, connection: Connection, frame: RegisterFrame) -> None:
        if not frame.key_hash:
            raise ValidationError("keyHash must not be empty")

        if await self.hub.join_group(connection, frame.key_hash):
            await self.reply(connection, RegisterSuccess())

    async def _handle_message(self, connection: Connection, frame: MessageFrame) -> None:
        self._check_sender(connection, frame.key_hash)

        payload = RelayedMessage(encrypted_message=frame.encrypted_message).to_json()
        delivered = await self.hub.broadcast_to_group(
            connection, connection.group_key, payload
        )
        self.logger.debug(
            f"转发消息，分组 {short_key(connection.group_key)}，接收方 {delivered}"
        )

    async def _handle_copy(self, connection: Connection, frame: CopyFrame) -> None:
        self._check_sender(connection, frame.key_hash)

        payload = RelayedCopy(
            encrypted_content=frame.encrypted_content,
            content_type=frame.content_type,
        ).to_json()
        delivered = await self.hub.broadcast_to_group(
            connection, connection.group_key, payload
        )
        self.logger.debug(
            f"处理复制请求，分组 {short_key(connection.group_key)}，"
            f"内容类型 {frame.content_type or '-'}，接收方 {delivered}"
        )

        await self.reply(connection, CopyResponse(success=True))

    @staticmethod
    def _check_sender(connection: Connection, key_hash: str) -> None:
        """中继前置条件：已注册，且声明的密钥与注册的一致"""
        if not connection.registered:
            raise StateError("register first")
        if key_hash != connection.group_key:
            raise ValidationError("key mismatch")
