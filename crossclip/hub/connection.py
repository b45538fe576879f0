"""Hub 连接与发件箱

每个连接同时运行两个任务：
- 读任务 (read_pump)：逐帧解码并交给协议处理器，维护读超时
- 写任务 (write_pump)：排空发件箱并合并写出，定时发送 ping

两个任务只通过有界发件箱和 Hub 的注销操作协作。
"""

import asyncio
import itertools
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, List, Optional

from websockets.exceptions import ConnectionClosed

from ..exceptions import BackpressureEviction, OutboxClosedError, TransportError
from ..protocol import OutboundFrame, encode_burst
from ..utils import get_logger, short_key

if TYPE_CHECKING:
    from .manager import Hub
    from .router import MessageHandler


logger = get_logger("crossclip.hub.connection")


class Outbox:
    """有界的出站帧队列

    入队从不阻塞：队列满时 offer 返回 False，由调用方决定如何处理（驱逐）。
    关闭只能发生一次，由 Hub 的注销操作负责。
    """

    def __init__(self, capacity: int = 256):
        if capacity <= 0:
            raise ValueError("Outbox capacity must be positive")
        self.capacity = capacity
        self._frames: Deque[str] = deque()
        self._ready = asyncio.Event()
        self._closed = False

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def full(self) -> bool:
        return len(self._frames) >= self.capacity

    def put(self, frame: str) -> None:
        """非阻塞入队

        Raises:
            OutboxClosedError: 发件箱已关闭
            BackpressureEviction: 发件箱已满
        """
        if self._closed:
            raise OutboxClosedError("Outbox is closed")
        if self.full:
            raise BackpressureEviction(details={"capacity": self.capacity})
        self._frames.append(frame)
        self._ready.set()

    def offer(self, frame: str) -> bool:
        """非阻塞入队

        Returns:
            入队是否成功；发件箱已满或已关闭时返回 False
        """
        try:
            self.put(frame)
        except (OutboxClosedError, BackpressureEviction):
            return False
        return True

    def close(self) -> None:
        """关闭发件箱

        Raises:
            OutboxClosedError: 发件箱已经关闭过
        """
        if self._closed:
            raise OutboxClosedError()
        self._closed = True
        self._ready.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """等待发件箱有帧可取或被关闭

        Args:
            timeout: 最长等待秒数，None 表示一直等待

        Returns:
            超时返回 False，否则返回 True
        """
        if self._frames or self._closed:
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def drain(self) -> List[str]:
        """取出当前排队的全部帧（保持先进先出顺序）"""
        frames = list(self._frames)
        self._frames.clear()
        if not self._closed:
            self._ready.clear()
        return frames


class Connection:
    """客户端连接

    状态：已连接（未分组）-> 已注册（group_key 非空）-> 已关闭（发件箱关闭）
    """

    _ids = itertools.count(1)

    def __init__(self, websocket: Any, outbox_capacity: int = 256):
        self.websocket = websocket
        self.conn_id = next(Connection._ids)
        self.group_key = ""
        self.outbox = Outbox(outbox_capacity)
        self.connected_at = time.time()
        self.last_seen = time.monotonic()
        self.remote_address = getattr(websocket, "remote_address", None)

    def __repr__(self) -> str:
        group = short_key(self.group_key) if self.group_key else "-"
        return f"<Connection #{self.conn_id} group={group}>"

    @property
    def registered(self) -> bool:
        return bool(self.group_key)

    @property
    def closed(self) -> bool:
        return self.outbox.closed

    def touch(self) -> None:
        """刷新最后活跃时间"""
        self.last_seen = time.monotonic()

    def idle_for(self) -> float:
        """距最后一次活跃的秒数"""
        return time.monotonic() - self.last_seen

    def send_frame(self, frame: OutboundFrame) -> bool:
        """把一条应答帧放入自己的发件箱

        Returns:
            是否入队成功
        """
        return self.outbox.offer(frame.to_json())

    # ===========================================
    # 读任务
    # ===========================================

    async def read_pump(
        self, hub: "Hub", handler: "MessageHandler", read_timeout: float = 60.0
    ) -> None:
        """读循环

        每次成功解析帧（由协议处理器刷新 last_seen）都把截止时间顺延到
        now + read_timeout；收到 pong 同样顺延（由写任务的 pong 回调刷新）。
        结束时总是注销连接。

        Args:
            hub: 所属 Hub
            handler: 协议处理器
            read_timeout: 读超时秒数
        """
        try:
            while True:
                remaining = self.last_seen + read_timeout - time.monotonic()
                if remaining <= 0:
                    raise TransportError(
                        "read deadline exceeded", {"idle": round(self.idle_for(), 3)}
                    )

                try:
                    raw = await asyncio.wait_for(self.websocket.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    # 期间可能收到了 pong，重新计算截止时间
                    continue

                await handler.handle(self, raw)

        except ConnectionClosed as e:
            logger.debug(f"{self} 连接已关闭: {e}")
        except TransportError as e:
            if await hub.unregister(self, reason="read timeout"):
                hub.metrics.record_keepalive_expired()
                logger.warning(f"{self} 读超时，断开连接: {e.message}")
        finally:
            await hub.unregister(self)

    # ===========================================
    # 写任务
    # ===========================================

    async def write_pump(
        self, hub: "Hub", ping_interval: float = 54.0, write_timeout: float = 10.0
    ) -> None:
        """写循环

        等待发件箱有帧或 ping 定时到期：
        - 有帧时一次取出所有已排队的帧，用换行拼接后一次写出
        - 定时到期时发送 ping
        - 发件箱关闭后写完剩余帧，发送关闭帧并退出

        写失败同样会注销连接并关闭底层连接，使读任务随之结束。

        Args:
            hub: 所属 Hub
            ping_interval: ping 间隔秒数
            write_timeout: 单次写入超时秒数
        """
        next_ping = time.monotonic() + ping_interval
        try:
            while True:
                remaining = next_ping - time.monotonic()
                if remaining <= 0:
                    await self._send_ping(write_timeout)
                    next_ping = time.monotonic() + ping_interval
                    continue

                if not await self.outbox.wait(remaining):
                    continue

                frames = self.outbox.drain()
                if frames:
                    await asyncio.wait_for(
                        self.websocket.send(encode_burst(frames)), timeout=write_timeout
                    )

                if self.outbox.closed:
                    await asyncio.wait_for(self.websocket.close(), timeout=write_timeout)
                    return

        except ConnectionClosed as e:
            logger.debug(f"{self} 写入时连接已关闭: {e}")
        except (asyncio.TimeoutError, OSError) as e:
            logger.info(f"{self} 写入失败: {e!r}")
        finally:
            await hub.unregister(self)
            await self._abort()

    async def _send_ping(self, write_timeout: float) -> None:
        pong_waiter = await asyncio.wait_for(self.websocket.ping(), timeout=write_timeout)
        pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, pong_waiter: "asyncio.Future") -> None:
        if pong_waiter.cancelled():
            return
        if pong_waiter.exception() is None:
            self.touch()

    async def _abort(self) -> None:
        """确保底层连接关闭，让读任务退出"""
        try:
            await self.websocket.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"{self} 关闭连接时出错: {e!r}")
