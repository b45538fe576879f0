"""CrossClip 指标收集器"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class RelayMetrics:
    """中继计数器

    所有计数只由 Hub 的串行化任务和各连接任务在事件循环内更新，不需要加锁。
    """

    started_at: float = field(default_factory=time.time)
    connections_opened: int = 0
    connections_closed: int = 0
    connections_rejected: int = 0
    frames_relayed: int = 0
    broadcasts: int = 0
    evictions: int = 0
    keepalive_expired: int = 0
    protocol_errors: int = 0
    decode_errors: int = 0

    @property
    def uptime(self) -> float:
        """运行时长（秒）"""
        return time.time() - self.started_at

    def record_connected(self) -> None:
        self.connections_opened += 1

    def record_disconnected(self) -> None:
        self.connections_closed += 1

    def record_rejected(self) -> None:
        self.connections_rejected += 1

    def record_broadcast(self, delivered: int) -> None:
        self.broadcasts += 1
        self.frames_relayed += delivered

    def record_eviction(self) -> None:
        self.evictions += 1

    def record_keepalive_expired(self) -> None:
        self.keepalive_expired += 1

    def record_protocol_error(self) -> None:
        self.protocol_errors += 1

    def record_decode_error(self) -> None:
        self.decode_errors += 1

    def to_dict(self) -> Dict[str, Any]:
        """导出指标数据"""
        return {
            "uptime": round(self.uptime, 3),
            "connections_opened": self.connections_opened,
            "connections_closed": self.connections_closed,
            "connections_rejected": self.connections_rejected,
            "frames_relayed": self.frames_relayed,
            "broadcasts": self.broadcasts,
            "evictions": self.evictions,
            "keepalive_expired": self.keepalive_expired,
            "protocol_errors": self.protocol_errors,
            "decode_errors": self.decode_errors,
        }
