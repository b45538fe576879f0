"""CrossClip 工具模块

提供基础设施支持：
- 配置管理 (RelayConfig)
- 日志系统 (configure_logging, get_logger)
"""

from .config import RelayConfig
from .logger import configure_logging, get_logger, short_key

__all__ = [
    # 配置管理
    "RelayConfig",
    # 日志系统
    "configure_logging",
    "get_logger",
    "short_key",
]
