"""재연결 래퍼 모듈.

SessionCoordinator.connect()를 제한된 지수 백오프로 재시도합니다.
코디네이터 자체는 자동 재시도를 하지 않으며, 이 래퍼를 사용할 때만 재시도합니다.

Examples:
    >>> session = ReconnectingSession(coordinator, max_attempts=5)
    >>> connected = await session.run()
    >>> # 사용자 요청으로 끊을 때는 재시도를 먼저 중단
    >>> await session.cancel()
    >>> await coordinator.disconnect()
"""

import asyncio
import logging
from typing import Optional

from .coordinator import SessionCoordinator, SessionState

logger = logging.getLogger(__name__)


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
) -> float:
    """지수 백오프 대기 시간을 계산합니다.

    Args:
        attempt (int): 현재 시도 번호 (0부터 시작)
        base_delay (float): 첫 대기 시간
        max_delay (float): 최대 대기 시간
        backoff_factor (float): 시도마다 곱해지는 배수

    Returns:
        float: 대기 시간 (초)
    """
    delay = base_delay * (backoff_factor ** attempt)
    return min(delay, max_delay)


class ReconnectingSession:
    """코디네이터 connect()를 Connected가 될 때까지 재시도하는 래퍼.

    Attributes:
        coordinator (SessionCoordinator): 대상 코디네이터
        max_attempts (int): 최대 시도 횟수
        attempts (int): 마지막 run()에서 사용한 시도 횟수
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.coordinator = coordinator
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None

    async def run(self) -> bool:
        """Connected가 되거나 시도 횟수를 모두 소진할 때까지 연결을 시도합니다.

        Returns:
            bool: Connected 도달 여부
        """
        for attempt in range(self.max_attempts):
            self.attempts = attempt + 1

            await self.coordinator.connect()
            state = await self.coordinator.wait_for_state(
                SessionState.CONNECTED,
                SessionState.FAILED,
                SessionState.DISCONNECTED,
            )
            if state == SessionState.CONNECTED:
                logger.info(f"[WebRTC] 연결 성공 ({self.attempts}/{self.max_attempts}번째 시도)")
                return True

            if attempt < self.max_attempts - 1:
                delay = calculate_backoff_delay(
                    attempt, self.base_delay, self.max_delay, self.backoff_factor
                )
                logger.warning(
                    f"[WebRTC] 연결 실패 ({self.attempts}/{self.max_attempts}): "
                    f"{self.coordinator.error} - {delay:.1f}초 후 재시도"
                )
                await asyncio.sleep(delay)

        logger.error(f"[WebRTC] {self.max_attempts}번 시도 후 연결 실패")
        return False

    def start(self) -> asyncio.Task:
        """run()을 백그라운드 태스크로 시작합니다."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def cancel(self) -> None:
        """진행 중인 재시도를 중단합니다. 코디네이터 상태는 건드리지 않습니다."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[WebRTC] 재연결 중단")


__all__ = ["ReconnectingSession", "calculate_backoff_delay"]
