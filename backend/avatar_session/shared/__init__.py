"""공유 스키마 모듈.

클라이언트와 중계 서버가 공통으로 사용하는 시그널링 메시지 모델을 제공합니다.
"""

from .messages import (
    MessageFormatError,
    SessionDescription,
    IceCandidatePayload,
    OfferMessage,
    AnswerMessage,
    IceCandidateMessage,
    ReadyMessage,
    SignalingMessage,
    parse_message,
    dump_message,
)

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
