"""Avatar session package.

이 패키지는 실시간 아바타 오디오 세션의 시그널링 및 연결 수명주기 코어를 포함합니다.

Modules:
    webrtc: 미디어 캡처, 시그널링 채널, 피어 세션, 세션 코디네이터, 레벨 모니터
    shared: 시그널링 메시지 스키마
    logging_config: 로깅 설정
"""

from .webrtc import (
    SessionCoordinator,
    SessionState,
    AudioLevelMonitor,
    ReconnectingSession,
)
from .shared import parse_message, dump_message

__all__ = [
    "SessionCoordinator",
    "SessionState",
    "AudioLevelMonitor",
    "ReconnectingSession",
    "parse_message",
    "dump_message",
]
