"""
Hub 服务器模块

中央中继和连接管理：
- 服务器实现
- 协议处理
- 连接与分组管理
"""

from .server import RelayServer, run_server
from .router import MessageHandler
from .manager import Hub, HubOp
from .groups import GroupIndex
from .connection import Connection, Outbox

__all__ = [
    "RelayServer",
    "run_server",
    "MessageHandler",
    "Hub",
    "HubOp",
    "GroupIndex",
    "Connection",
    "Outbox",
]
