"""CrossClip 协议核心模块"""

from .types import InboundType, OutboundType
from .messages import (
    # 入站帧
    RegisterFrame,
    MessageFrame,
    CopyFrame,
    InboundFrame,
    # 出站帧
    RegisterSuccess,
    RelayedMessage,
    RelayedCopy,
    CopyResponse,
    ErrorReply,
    OutboundFrame,
    # 编解码
    parse_frame,
    encode_burst,
    decode_burst,
    frame_type_of,
)

__all__ = [
    # 类型枚举
    "InboundType",
    "OutboundType",
    # 入站帧
    "RegisterFrame",
    "MessageFrame",
    "CopyFrame",
    "InboundFrame",
    # 出站帧
    "RegisterSuccess",
    "RelayedMessage",
    "RelayedCopy",
    "CopyResponse",
    "ErrorReply",
    "OutboundFrame",
    # 编解码
    "parse_frame",
    "encode_burst",
    "decode_burst",
    "frame_type_of",
]
