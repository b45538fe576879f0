"""测试协议帧的解析和序列化"""

import json

import pytest

from crossclip.exceptions import DecodeError, UnknownTypeError, ValidationError
from crossclip.protocol import (
    CopyFrame,
    CopyResponse,
    ErrorReply,
    InboundType,
    MessageFrame,
    OutboundType,
    RegisterFrame,
    RegisterSuccess,
    RelayedCopy,
    RelayedMessage,
    decode_burst,
    encode_burst,
    frame_type_of,
    parse_frame,
)


def test_parse_register():
    frame = parse_frame('{"type":"register","keyHash":"abc"}')

    assert isinstance(frame, RegisterFrame)
    assert frame.frame_type == InboundType.REGISTER
    assert frame.key_hash == "abc"


def test_parse_message_and_copy():
    message = parse_frame(
        json.dumps({"type": "message", "keyHash": "abc", "encryptedMessage": "X"})
    )
    assert isinstance(message, MessageFrame)
    assert message.encrypted_message == "X"

    copy = parse_frame(
        b'{"type":"copy","keyHash":"abc","encryptedContent":"C","contentType":"image"}'
    )
    assert isinstance(copy, CopyFrame)
    assert copy.encrypted_content == "C"
    assert copy.content_type == "image"


def test_parse_missing_fields_default_to_empty():
    """缺失或为 null 的可选字段视为空串"""
    frame = parse_frame('{"type":"message","keyHash":null}')

    assert frame.key_hash == ""
    assert frame.encrypted_message == ""


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        '{"keyHash":"abc"}',
        '{"type":42}',
        b"\xff\xfe",
    ],
)
def test_parse_malformed_frame(raw):
    with pytest.raises(DecodeError) as exc_info:
        parse_frame(raw)
    assert exc_info.value.error_code == "PROTO001"


def test_parse_unknown_type():
    with pytest.raises(UnknownTypeError) as exc_info:
        parse_frame('{"type":"ping"}')

    assert exc_info.value.message == "unknown message type: ping"
    assert exc_info.value.type_name == "ping"


def test_parse_non_string_field():
    with pytest.raises(ValidationError):
        parse_frame('{"type":"register","keyHash":123}')


def test_outbound_shapes():
    assert RegisterSuccess().to_dict() == {
        "type": "register_success",
        "message": "registered",
    }
    assert CopyResponse().to_dict() == {
        "type": "copy_response",
        "success": True,
        "message": "copy request sent",
    }
    assert ErrorReply.from_error(ValidationError("key mismatch")).to_dict() == {
        "type": "error",
        "message": "key mismatch",
    }


def test_relayed_frames_omit_empty_fields():
    """转发帧不带 keyHash，空字段省略"""
    assert RelayedMessage(encrypted_message="X").to_dict() == {
        "type": "message",
        "encryptedMessage": "X",
    }
    assert RelayedMessage().to_dict() == {"type": "message"}
    assert RelayedCopy(encrypted_content="C").to_dict() == {
        "type": "copy",
        "encryptedContent": "C",
    }


def test_inbound_frames_serialize_for_clients():
    frame = CopyFrame(key_hash="abc", encrypted_content="C", content_type="text")

    assert parse_frame(frame.to_json()) == frame
    assert json.loads(RegisterFrame(key_hash="abc").to_json()) == {
        "type": "register",
        "keyHash": "abc",
    }


def test_burst_split():
    """服务器合并写出的多条帧可以按行拆分"""
    burst = encode_burst(
        [RelayedMessage(encrypted_message="a\nb").to_json(), CopyResponse().to_json()]
    )

    frames = decode_burst(burst)

    assert len(frames) == 2
    assert frames[0]["encryptedMessage"] == "a\nb"
    assert frame_type_of(frames[1]) == OutboundType.COPY_RESPONSE
    assert frame_type_of({"type": "unknown"}) is None


def test_burst_invalid_line():
    with pytest.raises(DecodeError):
        decode_burst('{"type":"message"}\n{oops')


def test_error_to_dict():
    error = ValidationError("key mismatch", details={"expected": "abc"})

    assert error.to_dict() == {
        "error_code": "PROTO002",
        "error_type": "ValidationError",
        "message": "key mismatch",
        "details": {"expected": "abc"},
    }
