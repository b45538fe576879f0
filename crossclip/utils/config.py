"""CrossClip 配置管理

本模块提供统一的配置管理接口，支持环境变量、JSON 配置文件和运行时更新。
配置优先级：命令行参数 > 环境变量 > 配置文件 > 默认值
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..exceptions import ConfigurationError


@dataclass
class RelayConfig:
    """CrossClip 配置类

    包含中继服务器、连接保活和日志的所有配置选项。
    """

    # 服务器配置
    host: str = "0.0.0.0"
    port: int = 8080
    ws_path: str = "/ws"
    health_path: str = "/health"
    max_connections: int = 0  # 0 表示不限制

    # WebSocket 配置
    max_message_size: int = 10 * 1024 * 1024
    write_buffer_size: int = 32 * 1024
    outbox_capacity: int = 256

    # 保活配置（秒）
    ping_interval: float = 54.0
    read_timeout: float = 60.0
    write_timeout: float = 10.0
    sweep_interval: float = 30.0

    # 日志配置
    log_level: str = "INFO"
    log_file: Optional[str] = None
    enable_rich_logging: bool = True

    # 自定义配置
    custom: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, base: Optional["RelayConfig"] = None) -> "RelayConfig":
        """从环境变量创建配置

        环境变量格式：CROSSCLIP_<配置名大写>，例如 CROSSCLIP_PORT。

        Args:
            base: 作为默认值的配置，为空时使用内置默认值

        Returns:
            合并了环境变量的配置实例
        """
        config = base if base is not None else cls()

        for f in fields(cls):
            if f.name == "custom":
                continue
            raw = os.getenv(f"CROSSCLIP_{f.name.upper()}")
            if raw is None:
                continue
            setattr(config, f.name, _coerce(f.name, raw, getattr(config, f.name)))

        return config

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RelayConfig":
        """从 JSON 配置文件创建配置

        文件结构::

            {
              "server": {"host": "0.0.0.0", "port": "8080"},
              "websocket": {"path": "/ws", "maxConnections": 1000,
                            "readBufferSize": 1048576, "writeBufferSize": 1048576},
              "logging": {"level": "info", "enableConsole": true, "enableFile": false}
            }

        Args:
            path: 配置文件路径

        Returns:
            配置实例

        Raises:
            ConfigurationError: 文件不存在或格式错误
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")

        config = cls()
        server = data.get("server") or {}
        websocket = data.get("websocket") or {}
        logging_section = data.get("logging") or {}

        try:
            if "host" in server:
                config.host = str(server["host"])
            if "port" in server:
                config.port = int(server["port"])

            if "path" in websocket:
                config.ws_path = str(websocket["path"])
            if "maxConnections" in websocket:
                config.max_connections = int(websocket["maxConnections"])
            if "maxMessageSize" in websocket:
                config.max_message_size = int(websocket["maxMessageSize"])
            elif "readBufferSize" in websocket:
                config.max_message_size = int(websocket["readBufferSize"])
            if "writeBufferSize" in websocket:
                config.write_buffer_size = int(websocket["writeBufferSize"])
            if "outboxCapacity" in websocket:
                config.outbox_capacity = int(websocket["outboxCapacity"])

            if "level" in logging_section:
                config.log_level = str(logging_section["level"]).upper()
            if "enableConsole" in logging_section:
                config.enable_rich_logging = bool(logging_section["enableConsole"])
            if logging_section.get("enableFile"):
                config.log_file = str(logging_section.get("file", "crossclip.log"))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in config file {path}: {e}")

        # 未识别的顶层段落保存在 custom 中
        for key, value in data.items():
            if key not in ("server", "websocket", "logging"):
                config.custom[key] = value

        return config

    def validate(self) -> None:
        """校验配置

        Raises:
            ConfigurationError: 配置项取值不合法
        """
        if not self.ws_path.startswith("/"):
            raise ConfigurationError(f"ws_path must start with '/': {self.ws_path}")
        if not self.health_path.startswith("/"):
            raise ConfigurationError(
                f"health_path must start with '/': {self.health_path}"
            )
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid port: {self.port}")
        if self.max_connections < 0:
            raise ConfigurationError("max_connections must not be negative")

        for name in (
            "max_message_size",
            "write_buffer_size",
            "outbox_capacity",
            "ping_interval",
            "read_timeout",
            "write_timeout",
            "sweep_interval",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        # 对端的 pong 必须在读超时之前到达
        if self.ping_interval >= self.read_timeout:
            raise ConfigurationError(
                f"ping_interval ({self.ping_interval}) must be shorter than "
                f"read_timeout ({self.read_timeout})"
            )

    def update(self, **kwargs) -> None:
        """更新配置项

        Args:
            **kwargs: 要更新的配置项，值为 None 的项会被忽略
        """
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                self.custom[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置项"""
        if hasattr(self, key):
            return getattr(self, key)
        return self.custom.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "custom"}
        result.update(self.custom)
        return result


def _coerce(name: str, raw: str, current: Any) -> Any:
    """按当前值的类型转换环境变量字符串"""
    try:
        if isinstance(current, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for CROSSCLIP_{name.upper()}: {raw}")
    return raw
