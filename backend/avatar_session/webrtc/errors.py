"""세션 코어 예외 정의.

Classes:
    SessionError: 모든 세션 예외의 기반 클래스
    MediaError: 로컬 미디어 획득 실패 (PermissionDenied, DeviceUnavailable)
    ChannelUnavailable: 시그널링 채널 연결/전송 불가
    NegotiationError: offer/answer 협상 실패
    TransportFailed: 피어 transport 실패 또는 협상 타임아웃
    NotConnected: 연결되지 않은 상태에서의 조작 (전제조건 위반)

Note:
    user_message는 UI 에러 슬롯에 그대로 노출되는 문구입니다.
"""


class SessionError(Exception):
    """세션 코어 예외의 기반 클래스."""

    user_message = "Session error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.user_message)


class MediaError(SessionError):
    user_message = "Failed to access microphone"


class PermissionDenied(MediaError):
    user_message = "Microphone permission denied"


class DeviceUnavailable(MediaError):
    user_message = "Microphone is not available"


class ChannelUnavailable(SessionError):
    user_message = "WebSocket connection error"


class NegotiationError(SessionError):
    user_message = "Failed to negotiate session"


class TransportFailed(SessionError):
    user_message = "Peer connection failed"


class NotConnected(SessionError):
    user_message = "Please connect first before using the microphone"


__all__ = [
    "SessionError",
    "MediaError",
    "PermissionDenied",
    "DeviceUnavailable",
    "ChannelUnavailable",
    "NegotiationError",
    "TransportFailed",
    "NotConnected",
]
