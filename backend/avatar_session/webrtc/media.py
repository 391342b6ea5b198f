"""로컬 미디어 캡처 모듈.

운영체제 오디오 입력 장치에서 마이크 트랙을 획득하고 해제합니다.

주요 기능:
    - ffmpeg 장치 입력(MediaPlayer)으로 마이크 캡처 (OS별 백엔드 자동 선택)
    - 권한/장치 오류를 PermissionDenied / DeviceUnavailable로 변환
    - 트랙 음소거 토글 (트랙은 유지)
    - 멱등 해제

Backends:
    - Linux: pulse → alsa 순서로 시도
    - macOS: avfoundation (":0" 기본 입력)
    - Windows: dshow (AUDIO_DEVICE 지정 필요)

Note:
    에코 제거/노이즈 억제/자동 게인 옵션은 핸들에 기록되어 로그로 남고, 실제 처리는
    OS 오디오 스택(예: PulseAudio module-echo-cancel 소스)에 위임됩니다.
    장치 오픈은 워커 스레드에서 수행되어 권한 프롬프트 동안 이벤트 루프를 막지 않습니다.

Examples:
    >>> capture = MediaCapture()
    >>> handle = await capture.acquire(MediaConstraints())
    >>> capture.set_track_enabled(handle, False)
    False
    >>> capture.release(handle)
"""

import asyncio
import logging
import platform
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay
from av.error import FFmpegError

from .config import MediaConstraints
from .errors import DeviceUnavailable, PermissionDenied
from .tracks import LocalAudioTrack

logger = logging.getLogger(__name__)


@dataclass
class LocalMediaHandle:
    """캡처된 오디오 소스의 소유권.

    Attributes:
        player: 장치를 열고 있는 MediaPlayer (ffmpeg 프로세스 소유)
        track (Optional[LocalAudioTrack]): 송신용 오디오 트랙 (relay 구독)
        relay (Optional[MediaRelay]): 원본 트랙을 여러 소비자에게 분배하는 릴레이
        constraints (MediaConstraints): 획득 시 요청된 처리 옵션
        backend (Optional[str]): 사용된 ffmpeg 입력 포맷
        released (bool): 해제 여부
    """

    player: Any
    track: Optional[LocalAudioTrack]
    constraints: MediaConstraints = field(default_factory=MediaConstraints)
    backend: Optional[str] = None
    released: bool = False
    relay: Optional[MediaRelay] = None

    @property
    def enabled(self) -> bool:
        return bool(self.track is not None and self.track.enabled)

    def subscribe(self) -> Optional[MediaStreamTrack]:
        """원본 캡처 트랙의 독립 구독을 반환합니다. (최신 프레임만 유지)

        송신 트랙의 음소거 여부와 무관하게 원본 프레임을 받습니다.
        해제된 핸들이거나 트랙이 없으면 None을 반환합니다.
        """
        if self.released or self.relay is None or self.player is None:
            return None
        source = getattr(self.player, "audio", None)
        if source is None:
            return None
        return self.relay.subscribe(source, buffered=False)


def capture_candidates(
    device: Optional[str] = None,
    fmt: Optional[str] = None,
    system: Optional[str] = None,
) -> List[Tuple[str, str]]:
    """시도할 (장치, ffmpeg 포맷) 목록을 반환합니다.

    Args:
        device: 장치 이름 (None이면 OS 기본값)
        fmt: ffmpeg 입력 포맷 (지정 시 해당 포맷만 시도)
        system: platform.system() 값 (테스트용)

    Returns:
        List[Tuple[str, str]]: 시도 순서대로 정렬된 후보

    Raises:
        DeviceUnavailable: Windows에서 장치가 지정되지 않은 경우
    """
    system = system or platform.system()

    if fmt:
        return [(device or "default", fmt)]

    if system == "Darwin":
        return [(device or ":0", "avfoundation")]

    if system == "Windows":
        if not device:
            raise DeviceUnavailable("AUDIO_DEVICE must be set for dshow capture")
        name = device if device.startswith("audio=") else f"audio={device}"
        return [(name, "dshow")]

    # Linux / 기타: PulseAudio 우선, ALSA fallback
    return [(device or "default", "pulse"), (device or "default", "alsa")]


class MediaCapture:
    """마이크 캡처 획득/해제 담당 클래스.

    Attributes:
        device (Optional[str]): 입력 장치 이름
        format (Optional[str]): ffmpeg 입력 포맷
        player_factory (Callable): MediaPlayer 생성 함수 (file, format, options)
    """

    def __init__(
        self,
        device: Optional[str] = None,
        format: Optional[str] = None,
        player_factory: Callable[..., Any] = MediaPlayer,
    ):
        self.device = device
        self.format = format
        self.player_factory = player_factory

    def _open_player(self, constraints: MediaConstraints) -> Tuple[Any, str]:
        """후보 장치를 순서대로 열어봅니다. (워커 스레드에서 실행)"""
        options = {
            "sample_rate": str(constraints.sample_rate),
            "channels": str(constraints.channels),
        }
        last_error: Optional[Exception] = None

        for device, fmt in capture_candidates(self.device, self.format):
            try:
                player = self.player_factory(device, format=fmt, options=options)
            except PermissionError as e:
                # 권한 거부는 다른 백엔드로 넘어가지 않음
                raise PermissionDenied(f"Microphone access denied ({fmt}:{device}): {e}") from e
            except (OSError, FFmpegError) as e:
                logger.warning(f"[WebRTC] 오디오 입력 열기 실패 ({fmt}:{device}): {e}")
                last_error = e
                continue

            if getattr(player, "audio", None) is None:
                video = getattr(player, "video", None)
                if video is not None:
                    video.stop()
                last_error = DeviceUnavailable(f"No audio track in {fmt}:{device}")
                continue

            return player, fmt

        raise DeviceUnavailable(f"No usable audio input device: {last_error}")

    async def acquire(self, constraints: Optional[MediaConstraints] = None) -> LocalMediaHandle:
        """로컬 마이크를 획득합니다.

        Args:
            constraints (Optional[MediaConstraints]): 처리 옵션 (None이면 모두 활성화)

        Returns:
            LocalMediaHandle: 획득한 미디어 핸들

        Raises:
            PermissionDenied: OS가 마이크 접근을 거부한 경우
            DeviceUnavailable: 사용 가능한 입력 장치가 없는 경우
        """
        constraints = constraints or MediaConstraints()
        player, backend = await asyncio.to_thread(self._open_player, constraints)

        relay = MediaRelay()
        handle = LocalMediaHandle(
            player=player,
            track=LocalAudioTrack(relay.subscribe(player.audio)),
            constraints=constraints,
            backend=backend,
            relay=relay,
        )
        logger.info(
            f"[WebRTC] 마이크 획득 완료 (backend={backend}, "
            f"echo_cancellation={constraints.echo_cancellation}, "
            f"noise_suppression={constraints.noise_suppression}, "
            f"auto_gain_control={constraints.auto_gain_control}, "
            f"{constraints.sample_rate}Hz/{constraints.channels}ch)"
        )
        return handle

    def release(self, handle: Optional[LocalMediaHandle]) -> None:
        """미디어 핸들의 모든 트랙을 종료합니다. 여러 번 호출해도 안전합니다."""
        if handle is None or handle.released:
            return
        handle.released = True

        if handle.track is not None:
            handle.track.stop()

        # MediaPlayer는 모든 트랙이 종료되면 ffmpeg 워커를 정리함
        for kind in ("audio", "video"):
            source = getattr(handle.player, kind, None)
            if source is not None:
                source.stop()

        logger.info(f"[WebRTC] 마이크 해제 완료 (backend={handle.backend})")

    def set_track_enabled(self, handle: Optional[LocalMediaHandle], enabled: bool) -> bool:
        """트랙 음소거 상태를 변경합니다.

        Args:
            handle (Optional[LocalMediaHandle]): 대상 핸들
            enabled (bool): 활성화 여부

        Returns:
            bool: 변경 후 활성화 상태 (트랙이 없으면 False)
        """
        if handle is None or handle.track is None or handle.released:
            return False
        handle.track.enabled = enabled
        logger.info(f"[WebRTC] 마이크 {'활성화' if enabled else '음소거'}")
        return handle.track.enabled


__all__ = ["LocalMediaHandle", "MediaCapture", "capture_candidates"]
