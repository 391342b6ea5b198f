"""오디오 레벨 모니터 모듈.

로컬 캡처 스트림을 별도 구독으로 받아 UI 표시용 0~100 레벨을 계산합니다.
세션 상태와 무관하게 동작합니다.

Level Calculation:
    1. 프레임 RMS 계산 (정수 포맷은 -1.0~1.0으로 정규화)
    2. dBFS 변환 후 -60dB → 0, 0dB → 100 선형 매핑
    3. 지수 평활 (smoothing 0.8): level = 0.8 * prev + 0.2 * current
    4. 반올림 후 0~100으로 제한

Note:
    송신 트랙이 음소거 상태이면 레벨은 0으로 측정됩니다.
"""

import asyncio
import inspect
import logging
from typing import Callable, List, Optional

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame

from .config import connection_config
from .media import LocalMediaHandle

logger = logging.getLogger(__name__)

SILENCE_FLOOR_DB = -60.0


class AudioLevelMonitor:
    """로컬 마이크 레벨 모니터.

    Attributes:
        level (int): 최근 계산된 레벨 (0~100)
        smoothing (float): 지수 평활 상수

    Examples:
        >>> monitor = AudioLevelMonitor()
        >>> monitor.on_level(lambda level: print(f"mic {level}"))
        >>> monitor.start(coordinator.local_media)
        >>> await monitor.stop()
    """

    def __init__(self, smoothing: float = connection_config.LEVEL_SMOOTHING):
        self.smoothing = smoothing
        self.level = 0
        self._smoothed = 0.0
        self._handlers: List[Callable] = []
        self._handle: Optional[LocalMediaHandle] = None
        self._track: Optional[MediaStreamTrack] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_level(self, handler: Callable) -> None:
        """레벨 갱신 핸들러 등록 (틱마다 호출)."""
        self._handlers.append(handler)

    @staticmethod
    def compute_level(frame: AudioFrame) -> float:
        """프레임 하나의 순간 레벨(0~100, 평활 전)을 계산합니다."""
        samples = frame.to_ndarray()
        if samples.size == 0:
            return 0.0

        if np.issubdtype(samples.dtype, np.integer):
            scale = float(np.iinfo(samples.dtype).max) + 1.0
            data = samples.astype(np.float64) / scale
        else:
            data = samples.astype(np.float64)

        rms = float(np.sqrt(np.mean(np.square(data))))
        if rms <= 0.0:
            return 0.0

        db = 20.0 * np.log10(rms)
        return float(np.clip((db - SILENCE_FLOOR_DB) / -SILENCE_FLOOR_DB * 100.0, 0.0, 100.0))

    def update(self, raw_level: float) -> int:
        """순간 레벨을 평활하여 현재 레벨을 갱신합니다."""
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * raw_level
        self.level = int(round(min(max(self._smoothed, 0.0), 100.0)))
        return self.level

    def start(self, handle: Optional[LocalMediaHandle]) -> bool:
        """핸들의 캡처 스트림 측정을 시작합니다.

        Returns:
            bool: 시작 여부 (트랙이 없거나 이미 실행 중이면 False)
        """
        if self.running:
            logger.warning("[WebRTC] 오디오 레벨 모니터 이미 실행 중")
            return False
        if handle is None:
            return False

        track = handle.subscribe()
        if track is None:
            logger.warning("[WebRTC] 오디오 레벨 모니터: 측정할 트랙 없음")
            return False

        self._handle = handle
        self._track = track
        self._task = asyncio.create_task(self._run())
        logger.info("[WebRTC] 오디오 레벨 모니터 시작")
        return True

    async def stop(self) -> None:
        """측정을 중단하고 레벨을 0으로 초기화합니다."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._track is not None:
            self._track.stop()
            self._track = None
            logger.info("[WebRTC] 오디오 레벨 모니터 중단")

        self._handle = None
        self._smoothed = 0.0
        self.level = 0

    async def _run(self) -> None:
        while True:
            try:
                frame = await self._track.recv()
            except MediaStreamError:
                logger.info("[WebRTC] 캡처 스트림 종료 - 레벨 모니터 종료")
                break

            raw = self.compute_level(frame) if self._handle.enabled else 0.0
            level = self.update(raw)

            for handler in list(self._handlers):
                try:
                    result = handler(level)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"[WebRTC] 레벨 핸들러 오류: {e}", exc_info=True)

        self.level = 0


__all__ = ["AudioLevelMonitor"]
