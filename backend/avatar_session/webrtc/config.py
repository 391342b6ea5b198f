"""WebRTC 세션 모듈 설정.

TURN/STUN 서버, 시그널링, 미디어 제약 조건 등 세션 코어 관련 상수와
환경변수 기반 설정.

설정값은 connect() 시점에 한 번 읽히며 세션 도중에는 다시 로드되지 않습니다.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _parse_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[WebRTC Config] 잘못된 숫자 값 무시: {value!r}")
        return default


# ============================================================
# ICE Server 설정
# ============================================================

# 공개 STUN 서버 (STUN_SERVER_URL 뒤에 항상 추가)
PUBLIC_STUN_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)


@dataclass(frozen=True)
class ICEServerConfig:
    """피어 연결에 사용할 STUN/TURN 서버 목록.

    Attributes:
        stun_urls: STUN 서버 URL (우선순위 순)
        turn_url: TURN 서버 URL
        turn_username: TURN 사용자명
        turn_credential: TURN 비밀번호
    """

    stun_urls: Tuple[str, ...] = PUBLIC_STUN_SERVERS
    turn_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ICEServerConfig":
        """환경변수에서 ICE 서버 설정을 읽습니다.

        STUN_SERVER_URL은 쉼표로 여러 개를 지정할 수 있으며, 공개 STUN 서버보다 앞에 옵니다.
        """
        env = os.environ if environ is None else environ
        custom = [url.strip() for url in env.get("STUN_SERVER_URL", "").split(",") if url.strip()]
        stun_urls = tuple(dict.fromkeys([*custom, *PUBLIC_STUN_SERVERS]))
        return cls(
            stun_urls=stun_urls,
            turn_url=env.get("TURN_SERVER_URL") or None,
            turn_username=env.get("TURN_USERNAME") or None,
            turn_credential=env.get("TURN_CREDENTIAL") or None,
        )

    @property
    def has_turn_server(self) -> bool:
        """TURN URL과 인증 정보가 모두 있는지 여부."""
        return bool(self.turn_url and self.turn_username and self.turn_credential)

    def as_dicts(self) -> List[dict]:
        """브라우저 RTCPeerConnection 형식의 ICE 서버 목록을 반환합니다.

        Returns:
            list: [{"urls": ...}, ..., {"urls": ..., "username": ..., "credential": ...}]
        """
        servers = [{"urls": url} for url in self.stun_urls]
        if self.has_turn_server:
            servers.append({
                "urls": self.turn_url,
                "username": self.turn_username,
                "credential": self.turn_credential,
            })
        return servers


# ============================================================
# 시그널링 채널 설정
# ============================================================

@dataclass(frozen=True)
class SignalingConfig:
    """시그널링 WebSocket 설정."""

    # WebSocket 연결 수립 타임아웃 (초)
    OPEN_TIMEOUT: float = _parse_float(os.getenv("SIGNALING_OPEN_TIMEOUT"), 10.0)

    # keepalive ping 간격/타임아웃 (초)
    PING_INTERVAL: float = 20.0
    PING_TIMEOUT: float = 10.0


# ============================================================
# WebRTC 연결 설정
# ============================================================

@dataclass(frozen=True)
class ConnectionConfig:
    """WebRTC 연결 관련 설정."""

    # ready 전송 후 transport가 connected에 도달해야 하는 시간 (초, 0이면 비활성)
    NEGOTIATION_TIMEOUT: float = _parse_float(os.getenv("NEGOTIATION_TIMEOUT"), 30.0)

    # 오디오 샘플레이트 (Hz)
    AUDIO_SAMPLE_RATE: int = 48000

    # 오디오 레벨 스무딩 상수
    LEVEL_SMOOTHING: float = 0.8


# ============================================================
# 미디어 제약 조건
# ============================================================

@dataclass(frozen=True)
class MediaConstraints:
    """로컬 오디오 캡처 처리 옵션.

    세 옵션 모두 기본 활성화되어 있습니다.
    """

    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    sample_rate: int = field(default=ConnectionConfig.AUDIO_SAMPLE_RATE)
    channels: int = 1


# ============================================================
# 세션 설정 (pydantic-settings)
# ============================================================

class SessionSettings(BaseSettings):
    """아바타 세션 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    # 시그널링 엔드포인트
    SIGNALING_URL: str = Field(
        default="ws://localhost:8000/ws/rtc",
        description="시그널링 서버 WebSocket URL"
    )

    # 오디오 입력 장치 (ffmpeg 장치 이름, 미지정 시 OS 기본값)
    AUDIO_DEVICE: Optional[str] = Field(
        default=None,
        description="오디오 입력 장치 이름"
    )

    AUDIO_FORMAT: Optional[str] = Field(
        default=None,
        description="ffmpeg 입력 포맷 (pulse, alsa, avfoundation, dshow)"
    )

    # 미디어 처리 옵션
    ECHO_CANCELLATION: bool = Field(default=True, description="에코 제거")
    NOISE_SUPPRESSION: bool = Field(default=True, description="노이즈 억제")
    AUTO_GAIN_CONTROL: bool = Field(default=True, description="자동 게인 조절")

    # 시그널링 서버 접근 비밀번호 (비어있으면 인증 생략)
    ACCESS_PASSWORD: str = Field(default="", description="WebSocket 접근 토큰")

    # 로깅 설정
    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")

    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    @field_validator("SIGNALING_URL")
    @classmethod
    def validate_signaling_url(cls, v: str) -> str:
        """시그널링 URL 스킴 검증"""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("SIGNALING_URL은 ws:// 또는 wss://로 시작해야 합니다.")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    def media_constraints(self) -> MediaConstraints:
        """현재 설정으로 MediaConstraints를 생성합니다."""
        return MediaConstraints(
            echo_cancellation=self.ECHO_CANCELLATION,
            noise_suppression=self.NOISE_SUPPRESSION,
            auto_gain_control=self.AUTO_GAIN_CONTROL,
        )

    class Config:
        """Pydantic 설정"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_session_settings() -> SessionSettings:
    """설정 싱글톤 인스턴스 반환.

    Returns:
        SessionSettings: 설정 객체
    """
    return SessionSettings()


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig.from_env()
signaling_config = SignalingConfig()
connection_config = ConnectionConfig()


logger.debug(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.debug(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
logger.debug(f"[WebRTC Config] 협상 타임아웃: {connection_config.NEGOTIATION_TIMEOUT}s")
