"""CrossClip 消息格式定义

本模块定义了中继协议的帧结构，包括客户端发来的入站帧和服务器回发的出站帧。
所有帧都提供了内置的 JSON 序列化方法，入站帧额外提供反序列化方法。

载荷字段（encryptedMessage / encryptedContent）对服务器来说是不透明的，
原样转发，不做任何解析。
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .types import InboundType, OutboundType
from ..exceptions import ClientError, DecodeError, UnknownTypeError, ValidationError


def _to_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _optional_str(data: Dict[str, Any], field_name: str) -> str:
    """读取可选字符串字段，缺失或 null 视为空串"""
    value = data.get(field_name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value


# === 入站帧 ===


@dataclass
class RegisterFrame:
    """注册帧：声明连接所属的分组"""

    key_hash: str = ""

    frame_type = InboundType.REGISTER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegisterFrame":
        return cls(key_hash=_optional_str(data, "keyHash"))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.frame_type.value, "keyHash": self.key_hash}

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class MessageFrame:
    """文本中继帧"""

    key_hash: str = ""
    encrypted_message: str = ""

    frame_type = InboundType.MESSAGE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageFrame":
        return cls(
            key_hash=_optional_str(data, "keyHash"),
            encrypted_message=_optional_str(data, "encryptedMessage"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.frame_type.value,
            "keyHash": self.key_hash,
            "encryptedMessage": self.encrypted_message,
        }

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class CopyFrame:
    """带内容类型的中继帧（文本或图片）"""

    key_hash: str = ""
    encrypted_content: str = ""
    content_type: str = ""

    frame_type = InboundType.COPY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CopyFrame":
        return cls(
            key_hash=_optional_str(data, "keyHash"),
            encrypted_content=_optional_str(data, "encryptedContent"),
            content_type=_optional_str(data, "contentType"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.frame_type.value,
            "keyHash": self.key_hash,
            "encryptedContent": self.encrypted_content,
            "contentType": self.content_type,
        }

    def to_json(self) -> str:
        return _to_json(self.to_dict())


InboundFrame = Union[RegisterFrame, MessageFrame, CopyFrame]

INBOUND_FRAME_CLASSES = {
    InboundType.REGISTER: RegisterFrame,
    InboundType.MESSAGE: MessageFrame,
    InboundType.COPY: CopyFrame,
}


# === 出站帧 ===


@dataclass
class RegisterSuccess:
    """注册成功应答"""

    message: str = "registered"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": OutboundType.REGISTER_SUCCESS.value, "message": self.message}

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class RelayedMessage:
    """转发给同组其他客户端的文本帧"""

    encrypted_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": OutboundType.MESSAGE.value}
        if self.encrypted_message:
            result["encryptedMessage"] = self.encrypted_message
        return result

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class RelayedCopy:
    """转发给同组其他客户端的复制帧"""

    encrypted_content: str = ""
    content_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": OutboundType.COPY.value}
        if self.encrypted_content:
            result["encryptedContent"] = self.encrypted_content
        if self.content_type:
            result["contentType"] = self.content_type
        return result

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class CopyResponse:
    """复制请求的确认应答"""

    success: bool = True
    message: str = "copy request sent"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": OutboundType.COPY_RESPONSE.value,
            "success": self.success,
            "message": self.message,
        }

    def to_json(self) -> str:
        return _to_json(self.to_dict())


@dataclass
class ErrorReply:
    """错误应答"""

    message: str = ""

    @classmethod
    def from_error(cls, error: ClientError) -> "ErrorReply":
        return cls(message=error.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": OutboundType.ERROR.value, "message": self.message}

    def to_json(self) -> str:
        return _to_json(self.to_dict())


OutboundFrame = Union[RegisterSuccess, RelayedMessage, RelayedCopy, CopyResponse, ErrorReply]


# === 编解码 ===


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """解析一条入站帧

    Args:
        raw: 从连接读到的原始文本（或二进制）帧

    Returns:
        对应类型的入站帧实例

    Raises:
        DecodeError: 帧不是合法的 JSON 对象，或缺少 type 字段
        UnknownTypeError: type 字段不在已知类型中
        ValidationError: 字段类型不正确
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Frame is not valid UTF-8: {e}")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON frame: {e}")

    if not isinstance(data, dict):
        raise DecodeError("Frame must be a JSON object")

    type_name = data.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise DecodeError("Frame is missing the type field")

    try:
        frame_type = InboundType(type_name)
    except ValueError:
        raise UnknownTypeError(type_name)

    return INBOUND_FRAME_CLASSES[frame_type].from_dict(data)


def encode_burst(frames: List[str]) -> str:
    """把多条已序列化的出站帧合并为一次写入"""
    return "\n".join(frames)


def decode_burst(raw: Union[str, bytes]) -> List[Dict[str, Any]]:
    """拆分服务器合并写出的帧

    服务器会把同一时刻排队的多条帧用换行拼接后一次发出，
    JSON 序列化不会产生裸换行，因此按行切分即可还原。
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    frames = []
    for line in raw.split("\n"):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid JSON frame: {e}")
        if isinstance(data, dict):
            frames.append(data)
    return frames


def frame_type_of(data: Dict[str, Any]) -> Optional[OutboundType]:
    """获取出站帧字典的类型，未知类型返回 None"""
    try:
        return OutboundType(data.get("type"))
    except ValueError:
        return None
