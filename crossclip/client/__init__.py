"""
客户端模块

- RelayClient: 中继客户端
- key_hash: 由共享密钥计算分组标识
"""

from .base import RelayClient, key_hash

__all__ = [
    "RelayClient",
    "key_hash",
]
