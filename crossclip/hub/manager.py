"""Hub 连接管理器

Hub 拥有全部共享状态（存活连接集合和分组索引）。所有修改都通过一个请求队列
交给唯一的串行化任务逐条执行，调用方通过 Future 等待结果，因此无需加锁。
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set

from .connection import Connection
from .groups import GroupIndex
from ..exceptions import BackpressureEviction
from ..monitor import RelayMetrics
from ..utils import get_logger, short_key


class HubOp(Enum):
    """Hub 请求类型"""

    REGISTER = "register"
    UNREGISTER = "unregister"
    JOIN_GROUP = "join_group"
    BROADCAST = "broadcast"
    SWEEP = "sweep"


@dataclass
class HubRequest:
    """提交给串行化任务的请求"""

    op: HubOp
    connection: Optional[Connection] = None
    key: str = ""
    payload: str = ""
    reason: str = ""
    future: Optional[asyncio.Future] = None


class Hub:
    """连接中枢

    状态不变量：
    - 分组索引中的每个连接都在存活集合中
    - 一个连接同一时刻至多属于一个分组
    - 连接的发件箱只在离开存活集合时关闭，且只关闭一次
    """

    def __init__(
        self,
        read_timeout: float = 60.0,
        sweep_interval: float = 30.0,
        max_connections: int = 0,
        metrics: Optional[RelayMetrics] = None,
    ):
        self.read_timeout = read_timeout
        self.sweep_interval = sweep_interval
        self.max_connections = max_connections  # 0 表示不限制
        self.metrics = metrics or RelayMetrics()

        # 共享状态，只由串行化任务修改
        self._connections: Set[Connection] = set()
        self._groups = GroupIndex()

        # 串行化任务
        self._requests: Optional[asyncio.Queue] = None
        self._runner: Optional[asyncio.Task] = None
        self._sweeper: Optional[asyncio.Task] = None
        self.running = False

        self._operations = {
            HubOp.REGISTER: self._apply_register,
            HubOp.UNREGISTER: self._apply_unregister,
            HubOp.JOIN_GROUP: self._apply_join_group,
            HubOp.BROADCAST: self._apply_broadcast,
            HubOp.SWEEP: self._apply_sweep,
        }

        self.logger = get_logger("crossclip.hub.manager")

    # ===========================================
    # 生命周期
    # ===========================================

    async def start(self) -> None:
        """启动串行化任务和保活巡检任务"""
        if self.running:
            self.logger.warning("Hub 已经在运行")
            return

        self._requests = asyncio.Queue()
        self.running = True
        self._runner = asyncio.create_task(self._run())
        self._sweeper = asyncio.create_task(self._keepalive_sweeper())
        self.logger.info("Hub 已启动")

    async def stop(self) -> None:
        """停止 Hub

        处理完队列中剩余的请求，然后注销所有存活连接（各自的发件箱关闭一次）。
        """
        if not self.running:
            return

        self.running = False
        for task in (self._sweeper, self._runner):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._runner = None
        self._sweeper = None

        while not self._requests.empty():
            self._dispatch(self._requests.get_nowait())

        for connection in list(self._connections):
            self._apply(HubRequest(HubOp.UNREGISTER, connection, reason="shutdown"))

        self.logger.info("Hub 已停止")

    # ===========================================
    # 公共操作（全部经过串行化任务）
    # ===========================================

    async def register(self, connection: Connection) -> bool:
        """登记新连接（未分组）

        Returns:
            是否登记成功；存活连接数已达上限时返回 False
        """
        return await self._submit(HubRequest(HubOp.REGISTER, connection))

    async def unregister(self, connection: Connection, reason: str = "closed") -> bool:
        """注销连接

        可以从多个失败路径重复调用，只有第一次生效。

        Returns:
            本次调用是否真正移除了连接
        """
        return await self._submit(
            HubRequest(HubOp.UNREGISTER, connection, reason=reason)
        )

    async def join_group(self, connection: Connection, key: str) -> bool:
        """把连接加入分组

        已在其他分组中的连接会被原子地移动到新分组。

        Returns:
            连接是否仍然存活并完成加入
        """
        if not key:
            raise ValueError("Group key must not be empty")
        return await self._submit(HubRequest(HubOp.JOIN_GROUP, connection, key=key))

    async def broadcast_to_group(
        self, sender: Optional[Connection], key: str, payload: str
    ) -> int:
        """向分组内除发送者以外的连接投递一条已序列化的帧

        目标发件箱已满时，目标被视为无响应并立即注销，广播不会阻塞。

        Returns:
            成功入队的目标数量
        """
        return await self._submit(
            HubRequest(HubOp.BROADCAST, sender, key=key, payload=payload)
        )

    async def sweep(self) -> int:
        """注销超过读超时仍未活跃的连接

        Returns:
            被注销的连接数量
        """
        return await self._submit(HubRequest(HubOp.SWEEP))

    # ===========================================
    # 只读查询
    # ===========================================

    def live_count(self) -> int:
        """存活连接数量（供健康检查使用）"""
        return len(self._connections)

    def group_count(self) -> int:
        return len(self._groups)

    def group_size(self, key: str) -> int:
        return self._groups.size(key)

    def group_members(self, key: str) -> Set[Connection]:
        return self._groups.members(key)

    def is_live(self, connection: Connection) -> bool:
        return connection in self._connections

    def get_stats(self) -> Dict[str, Any]:
        """获取统计信息"""
        return {
            "running": self.running,
            "live": self.live_count(),
            "groups": self.group_count(),
            "metrics": self.metrics.to_dict(),
        }

    # ===========================================
    # 串行化任务
    # ===========================================

    async def _submit(self, request: HubRequest) -> Any:
        if not self.running:
            # Hub 已停止：没有并发的修改者，直接执行
            return self._apply(request)

        request.future = asyncio.get_running_loop().create_future()
        self._requests.put_nowait(request)
        return await request.future

    async def _run(self) -> None:
        while True:
            request = await self._requests.get()
            self._dispatch(request)

    def _dispatch(self, request: HubRequest) -> None:
        future = request.future
        try:
            result = self._apply(request)
        except Exception as e:
            self.logger.error(f"Hub 处理 {request.op.value} 请求失败: {e!r}")
            if future is not None and not future.done():
                future.set_exception(e)
            return

        if future is not None and not future.done():
            future.set_result(result)

    def _apply(self, request: HubRequest) -> Any:
        return self._operations[request.op](request)

    async def _keepalive_sweeper(self) -> None:
        """保活巡检任务"""
        while self.running:
            await asyncio.sleep(self.sweep_interval)
            try:
                expired = await self.sweep()
                if expired:
                    self.logger.info(f"保活巡检注销了 {expired} 个连接")
            except Exception as e:
                self.logger.error(f"保活巡检出错: {e!r}")

    # ===========================================
    # 状态修改（只在串行化任务中调用）
    # ===========================================

    def _apply_register(self, request: HubRequest) -> bool:
        connection = request.connection
        if self.max_connections and self.live_count() >= self.max_connections:
            self.metrics.record_rejected()
            self.logger.warning(
                f"拒绝连接 {connection}: 超过最大连接数 {self.max_connections}"
            )
            return False

        self._connections.add(connection)
        self.metrics.record_connected()
        self.logger.info(f"客户端连接 {connection}，当前连接数: {self.live_count()}")
        return True

    def _apply_unregister(self, request: HubRequest) -> bool:
        connection = request.connection
        if connection not in self._connections:
            return False

        self._connections.discard(connection)
        if connection.group_key:
            self._groups.remove(connection.group_key, connection)
        connection.outbox.close()

        self.metrics.record_disconnected()
        self.logger.info(
            f"客户端断开 {connection} ({request.reason or 'closed'})，"
            f"在线 {time.time() - connection.connected_at:.1f}s，"
            f"当前连接数: {self.live_count()}"
        )
        return True

    def _apply_join_group(self, request: HubRequest) -> bool:
        connection = request.connection
        key = request.key
        if connection not in self._connections:
            self.logger.debug(f"{connection} 已断开，忽略加入分组 {short_key(key)}")
            return False

        previous = connection.group_key
        if previous and previous != key:
            self._groups.remove(previous, connection)
            self.logger.info(
                f"{connection} 从分组 {short_key(previous)} 移动到 {short_key(key)}"
            )

        connection.group_key = key
        self._groups.add(key, connection)

        if previous != key:
            self.logger.info(
                f"客户端注册成功 {connection}，分组人数: {self._groups.size(key)}"
            )
        return True

    def _apply_broadcast(self, request: HubRequest) -> int:
        sender = request.connection
        delivered = 0
        evicted = []

        for target in self._groups.members(request.key):
            if target is sender:
                continue
            try:
                target.outbox.put(request.payload)
                delivered += 1
            except BackpressureEviction as e:
                self.logger.warning(f"{target} 发件箱已满 ({e.message})，驱逐该连接")
                evicted.append(target)

        for target in evicted:
            self.metrics.record_eviction()
            self._apply_unregister(
                HubRequest(HubOp.UNREGISTER, target, reason="backpressure")
            )

        self.metrics.record_broadcast(delivered)
        self.logger.debug(
            f"转发到分组 {short_key(request.key)}: 投递 {delivered}，驱逐 {len(evicted)}"
        )
        return delivered

    def _apply_sweep(self, request: HubRequest) -> int:
        expired = [
            connection
            for connection in self._connections
            if connection.idle_for() > self.read_timeout
        ]
        removed = 0
        for connection in expired:
            if self._apply_unregister(
                HubRequest(HubOp.UNREGISTER, connection, reason="keepalive timeout")
            ):
                self.metrics.record_keepalive_expired()
                removed += 1
        return removed
