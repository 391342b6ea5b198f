"""로컬 오디오 트랙 모듈.

캡처된 마이크 트랙을 감싸 트랙을 유지한 채 음소거(enable/disable)할 수 있게 합니다.
"""

import logging

from aiortc import MediaStreamTrack
from av import AudioFrame

logger = logging.getLogger(__name__)


def make_silence(frame: AudioFrame) -> AudioFrame:
    """입력 프레임과 같은 포맷/길이의 무음 프레임을 생성합니다."""
    silence = AudioFrame(
        format=frame.format.name,
        layout=frame.layout.name,
        samples=frame.samples,
    )
    for p in silence.planes:
        p.update(bytes(p.buffer_size))
    silence.pts = frame.pts
    silence.sample_rate = frame.sample_rate
    silence.time_base = frame.time_base
    return silence


class LocalAudioTrack(MediaStreamTrack):
    """음소거 가능한 로컬 오디오 트랙.

    원본 캡처 트랙의 프레임을 그대로 전달하며, 비활성화 상태에서는 같은 타이밍의
    무음 프레임을 대신 전달합니다. 트랙 자체는 종료되지 않으므로 협상된 송신 경로가
    유지됩니다.

    Attributes:
        kind (str): 트랙 종류 ("audio")
        source (MediaStreamTrack): 원본 캡처 트랙
        enabled (bool): 활성화 여부

    Note:
        - source는 보통 MediaRelay 구독 트랙이며, 레벨 측정 등 다른 소비자는 별도 구독을 사용

    Examples:
        >>> track = LocalAudioTrack(player.audio)
        >>> track.enabled = False  # 상대방에게는 무음 전송
    """
    kind = "audio"

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.source = source
        self.enabled = True

    async def recv(self):
        """원본 트랙에서 프레임을 받아 전달합니다.

        Returns:
            AudioFrame: 원본 프레임 또는 (비활성화 시) 무음 프레임
        """
        frame = await self.source.recv()

        if self.enabled:
            return frame
        return make_silence(frame)

    def stop(self):
        """트랙과 원본 캡처 트랙을 함께 종료합니다."""
        if self.readyState != "ended":
            logger.debug("[WebRTC] 로컬 오디오 트랙 종료")
        super().stop()
        self.source.stop()
