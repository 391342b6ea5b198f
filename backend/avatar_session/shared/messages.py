"""시그널링 메시지 스키마 정의.

두 피어가 시그널링 채널로 주고받는 메시지를 정의합니다.
각 메시지는 ``type`` 필드로 구분되는 JSON 객체입니다.

    {"type": "offer", "offer": {"sdp": "...", "type": "offer"}}
    {"type": "answer", "answer": {"sdp": "...", "type": "answer"}}
    {"type": "ice-candidate", "candidate": {"candidate": "...", "sdpMid": "0", "sdpMLineIndex": 0}}
    {"type": "ready"}

SDP와 candidate 내용은 이 모듈에서 해석하지 않고 transport 라이브러리로 그대로 전달합니다.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class MessageFormatError(ValueError):
    """시그널링 메시지 형식 오류."""


# ==========================================
# 페이로드 모델
# ==========================================

class SessionDescription(BaseModel):
    """offer/answer 세션 디스크립션."""
    model_config = ConfigDict(extra="ignore")

    sdp: str = Field(..., description="SDP 본문")
    type: Literal["offer", "answer"] = Field(..., description="디스크립션 종류")


class IceCandidatePayload(BaseModel):
    """ICE candidate 디스크립터 (브라우저 RTCIceCandidateInit 형식)."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    candidate: str = Field(default="", description="candidate SDP 라인")
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


# ==========================================
# 메시지 모델
# ==========================================

class OfferMessage(BaseModel):
    type: Literal["offer"] = "offer"
    offer: SessionDescription


class AnswerMessage(BaseModel):
    type: Literal["answer"] = "answer"
    answer: SessionDescription


class IceCandidateMessage(BaseModel):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: IceCandidatePayload


class ReadyMessage(BaseModel):
    """로컬 리소스 준비 완료 신호. 페이로드 없음."""
    type: Literal["ready"] = "ready"


SignalingMessage = Annotated[
    Union[OfferMessage, AnswerMessage, IceCandidateMessage, ReadyMessage],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter = TypeAdapter(SignalingMessage)


def parse_message(raw: Union[str, bytes, dict]) -> SignalingMessage:
    """원본 프레임을 SignalingMessage로 변환합니다.

    Args:
        raw: JSON 문자열/바이트 또는 이미 디코딩된 dict

    Returns:
        SignalingMessage: 타입별 메시지 객체

    Raises:
        MessageFormatError: JSON 디코딩 실패, 알 수 없는 type, 필수 필드 누락 시
    """
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
            raise MessageFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageFormatError("Message must be a JSON object")

    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        raise MessageFormatError(
            f"Invalid signaling message (type={data.get('type')!r}): {e.error_count()} error(s)"
        ) from e


def dump_message(message: SignalingMessage) -> str:
    """SignalingMessage를 wire 형식의 JSON 문자열로 직렬화합니다."""
    return message.model_dump_json(by_alias=True)


__all__ = [
    "MessageFormatError",
    "SessionDescription",
    "IceCandidatePayload",
    "OfferMessage",
    "AnswerMessage",
    "IceCandidateMessage",
    "ReadyMessage",
    "SignalingMessage",
    "parse_message",
    "dump_message",
]
