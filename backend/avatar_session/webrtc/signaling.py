"""시그널링 채널 모듈.

중계 서버와의 WebSocket 연결을 통해 협상 메시지를 주고받습니다.

주요 기능:
    - WebSocket 연결 수립 (실패 시 ChannelUnavailable)
    - 수신 프레임을 SignalingMessage로 변환하여 수신 순서대로 핸들러에 전달
    - 형식 오류 프레임은 로그 후 무시
    - 로컬/원격 종료 모두 close 핸들러에 정확히 한 번 통지

Note:
    송신 버퍼링은 하지 않습니다. open 완료 전이나 close 이후의 send는
    ChannelUnavailable을 발생시킵니다.

Examples:
    >>> channel = SignalingChannel()
    >>> channel.on_message(handle_message)
    >>> channel.on_close(handle_close)
    >>> await channel.open("ws://localhost:8000/ws/rtc")
    >>> await channel.send(ReadyMessage())
    >>> await channel.close()
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..shared.messages import MessageFormatError, SignalingMessage, dump_message, parse_message
from .config import signaling_config
from .errors import ChannelUnavailable

logger = logging.getLogger(__name__)


class SignalingChannel:
    """중계 서버 WebSocket 시그널링 채널.

    Attributes:
        url (Optional[str]): 연결된 서버 URL
        is_open (bool): 송신 가능 여부
    """

    def __init__(
        self,
        open_timeout: float = signaling_config.OPEN_TIMEOUT,
        ping_interval: Optional[float] = signaling_config.PING_INTERVAL,
        ping_timeout: Optional[float] = signaling_config.PING_TIMEOUT,
    ):
        self.url: Optional[str] = None
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self._websocket: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._message_handlers: List[Callable] = []
        self._close_handlers: List[Callable] = []
        self._closed = False
        self._close_notified = False

    @property
    def is_open(self) -> bool:
        return self._websocket is not None and not self._closed

    def on_message(self, handler: Callable) -> None:
        """수신 메시지 핸들러 등록 (동기/비동기 함수 모두 가능)."""
        self._message_handlers.append(handler)

    def on_close(self, handler: Callable) -> None:
        """채널 종료 핸들러 등록. 인자로 종료 사유 문자열을 받습니다."""
        self._close_handlers.append(handler)

    async def open(self, url: str) -> None:
        """서버에 연결하고 수신 루프를 시작합니다.

        Args:
            url (str): ws:// 또는 wss:// URL

        Raises:
            ChannelUnavailable: 연결 거부, 잘못된 URI, 핸드셰이크 실패, 타임아웃 시
        """
        if self._closed:
            raise ChannelUnavailable("Channel already closed")
        if self._websocket is not None:
            raise ChannelUnavailable("Channel already open")

        self.url = url
        logger.info(f"[Signaling] 연결 시도: {url}")

        try:
            websocket = await websockets.connect(
                url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"[Signaling] 연결 실패: {url} ({type(e).__name__}: {e})")
            raise ChannelUnavailable(f"Cannot open signaling channel to {url}: {e}") from e

        # 연결 수립 중 close()가 호출된 경우
        if self._closed:
            await websocket.close()
            raise ChannelUnavailable("Channel closed while opening")

        self._websocket = websocket
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info(f"[Signaling] 연결 완료: {url}")

    async def send(self, message: SignalingMessage) -> None:
        """메시지를 전송합니다.

        Raises:
            ChannelUnavailable: 채널이 열려 있지 않거나 전송 중 연결이 끊긴 경우
        """
        if not self.is_open:
            raise ChannelUnavailable("Signaling channel is not open")

        try:
            await self._websocket.send(dump_message(message))
        except ConnectionClosed as e:
            raise ChannelUnavailable(f"Signaling channel closed during send: {e}") from e

        logger.debug(f"[Signaling] 전송: {message.type}")

    async def close(self) -> None:
        """채널을 닫습니다. 이미 닫힌 채널에 대해서는 아무 동작도 하지 않습니다."""
        if self._closed:
            return
        self._closed = True

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except WebSocketException as e:
                logger.debug(f"[Signaling] 종료 중 오류 무시: {e}")

        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._notify_close("closed locally")
        logger.info("[Signaling] 채널 종료")

    async def _read_loop(self) -> None:
        """수신 루프. 메시지 핸들러를 수신 순서대로 하나씩 await 합니다."""
        reason = "closed by server"
        try:
            async for raw in self._websocket:
                try:
                    message = parse_message(raw)
                except MessageFormatError as e:
                    logger.warning(f"[Signaling] 잘못된 메시지 무시: {e}")
                    continue

                logger.debug(f"[Signaling] 수신: {message.type}")
                for handler in list(self._message_handlers):
                    await self._safe_call(handler, message)

        except ConnectionClosed as e:
            reason = f"connection lost (code={e.rcvd.code if e.rcvd else None})"
        except Exception as e:
            logger.error(f"[Signaling] 수신 루프 오류: {e}", exc_info=True)
            reason = f"reader failed: {e}"
            if not self._closed:
                try:
                    await self._websocket.close()
                except WebSocketException as close_error:
                    logger.debug(f"[Signaling] 종료 중 오류 무시: {close_error}")
        finally:
            # 수신 루프가 어떤 이유로 끝나든 close 핸들러에 통지
            if not self._closed:
                self._closed = True
                logger.warning(f"[Signaling] 원격 종료: {reason}")
                await self._notify_close(reason)

    async def _notify_close(self, reason: str) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        for handler in list(self._close_handlers):
            await self._safe_call(handler, reason)

    @staticmethod
    async def _safe_call(handler: Callable, *args) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Signaling] 핸들러 오류: {e}", exc_info=True)


__all__ = ["SignalingChannel"]
