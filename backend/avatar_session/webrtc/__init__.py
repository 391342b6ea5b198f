"""WebRTC 세션 모듈.

아바타 미디어 엔진과의 1:1 오디오 세션 연결 수명주기를 관리합니다.

Classes:
    SessionCoordinator: connect/disconnect 수명주기 및 상태 공개
    SignalingChannel: 중계 서버 WebSocket 채널
    MediaCapture: 마이크 획득/해제
    PeerSession: offer/answer 협상 및 transport 관리
    AudioLevelMonitor: 마이크 레벨 측정
    ReconnectingSession: 지수 백오프 재연결 래퍼
    RoomManager: 중계 서버 룸 관리

Config:
    ice_config: ICE 서버 설정
    signaling_config: 시그널링 WebSocket 설정
    connection_config: WebRTC 연결 설정
"""

from .errors import (
    SessionError,
    MediaError,
    PermissionDenied,
    DeviceUnavailable,
    ChannelUnavailable,
    NegotiationError,
    TransportFailed,
    NotConnected,
)
from .config import (
    ice_config,
    signaling_config,
    connection_config,
    ICEServerConfig,
    SignalingConfig,
    ConnectionConfig,
    MediaConstraints,
    SessionSettings,
    get_session_settings,
)
from .tracks import LocalAudioTrack
from .media import MediaCapture, LocalMediaHandle
from .signaling import SignalingChannel
from .peer_session import PeerSession, NegotiationState, build_rtc_configuration
from .coordinator import SessionCoordinator, SessionState, SessionEvent, EventKind
from .audio_level import AudioLevelMonitor
from .reconnect import ReconnectingSession, calculate_backoff_delay
from .room_manager import RoomManager, RoomFull, Peer

__all__ = [
    # Errors
    "SessionError",
    "MediaError",
    "PermissionDenied",
    "DeviceUnavailable",
    "ChannelUnavailable",
    "NegotiationError",
    "TransportFailed",
    "NotConnected",
    # Classes
    "LocalAudioTrack",
    "MediaCapture",
    "LocalMediaHandle",
    "SignalingChannel",
    "PeerSession",
    "NegotiationState",
    "build_rtc_configuration",
    "SessionCoordinator",
    "SessionState",
    "SessionEvent",
    "EventKind",
    "AudioLevelMonitor",
    "ReconnectingSession",
    "calculate_backoff_delay",
    "RoomManager",
    "RoomFull",
    "Peer",
    # Config
    "ice_config",
    "signaling_config",
    "connection_config",
    "ICEServerConfig",
    "SignalingConfig",
    "ConnectionConfig",
    "MediaConstraints",
    "SessionSettings",
    "get_session_settings",
]
