"""
监控和指标模块

- 中继计数器
"""

from .metrics import RelayMetrics

__all__ = [
    "RelayMetrics",
]
