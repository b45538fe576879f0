"""CrossClip 类型定义

本模块定义了中继协议的帧类型枚举。入站类型是一个封闭集合，
每个成员在协议处理器中都有且只有一个处理函数。
"""

from enum import Enum


class InboundType(Enum):
    """客户端发往服务器的帧类型"""

    REGISTER = "register"
    MESSAGE = "message"
    COPY = "copy"


class OutboundType(Enum):
    """服务器发往客户端的帧类型"""

    REGISTER_SUCCESS = "register_success"
    MESSAGE = "message"
    COPY = "copy"
    COPY_RESPONSE = "copy_response"
    ERROR = "error"
