"""세션 코디네이터 모듈.

미디어 캡처, 시그널링 채널, 피어 세션을 하나의 connect/disconnect 수명주기로
묶고 연결 상태를 UI 계층에 공개합니다.

주요 기능:
    - connect(): 마이크 획득 → 시그널링 연결 → 피어 세션 생성 → ready 전송
    - 원격 ready 수신 시 offer 생성, offer 수신 시 answer 응답
    - transport 상태를 SessionState(disconnected/connecting/connected/failed)로 변환
    - disconnect(): 마이크 → 피어 → 채널 순서로 정확히 한 번씩 해제
    - toggle_microphone(): 연결 상태에서만 마이크 음소거 토글
    - 단일 에러 슬롯 (실패 시 설정, 연결 성공/해제/dismiss_error 시 초기화)

Architecture:
    - Epoch: connect() 시도마다 증가하는 세대 번호. 대기 중이던 비동기 단계가
      끝났을 때 세대가 바뀌었으면 결과를 해제하고 버림
    - Event Queue: 하위 컴포넌트 콜백은 모두 SessionEvent로 변환되어 시도별
      asyncio.Queue에 들어가고, 단일 pump 태스크만 상태를 변경함
    - Watchdog: ready 전송 후 NEGOTIATION_TIMEOUT 안에 connected가 되지 않으면 실패 처리

State Transitions:
    | 이벤트                | From                    | To           |
    |-----------------------|-------------------------|--------------|
    | connect()             | Disconnected, Failed    | Connecting   |
    | 미디어/채널 획득 실패 | Connecting              | Disconnected |
    | 협상 실패             | Connecting              | Disconnected |
    | transport connected   | Connecting              | Connected    |
    | transport failed      | Connecting, Connected   | Failed       |
    | 협상 타임아웃         | Connecting              | Failed       |
    | 채널 예기치 않은 종료 | Connecting, Connected   | Disconnected |
    | disconnect()          | any                     | Disconnected |

Events (pyee):
    - "statechange" (SessionState)
    - "errorchange" (Optional[str])
    - "track" (MediaStreamTrack): 원격 오디오 트랙
    - "localstream" (Optional[LocalMediaHandle]): 로컬 미디어 획득/해제

Examples:
    >>> coordinator = SessionCoordinator()
    >>> coordinator.on("statechange", lambda state: print(state.value))
    >>> await coordinator.connect()
    >>> await coordinator.wait_for_state(SessionState.CONNECTED, timeout=30)
    >>> coordinator.toggle_microphone()
    False
    >>> await coordinator.disconnect()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from pyee.asyncio import AsyncIOEventEmitter

from ..shared.messages import (
    AnswerMessage,
    IceCandidateMessage,
    OfferMessage,
    ReadyMessage,
)
from .config import SessionSettings, connection_config, get_session_settings
from .errors import (
    ChannelUnavailable,
    MediaError,
    NotConnected,
    SessionError,
    TransportFailed,
)
from .media import LocalMediaHandle, MediaCapture
from .peer_session import NegotiationState, PeerSession
from .signaling import SignalingChannel

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class EventKind(str, Enum):
    MESSAGE = "message"
    LOCAL_CANDIDATE = "local-candidate"
    REMOTE_TRACK = "remote-track"
    TRANSPORT_STATE = "transport-state"
    CHANNEL_CLOSED = "channel-closed"
    TIMEOUT = "timeout"


@dataclass
class SessionEvent:
    """pump 태스크가 처리하는 내부 이벤트."""

    kind: EventKind
    payload: Any = None


@dataclass
class _Attempt:
    """connect() 한 번에 생성되는 리소스 묶음."""

    epoch: int
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    media: Optional[LocalMediaHandle] = None
    channel: Optional[SignalingChannel] = None
    peer: Optional[PeerSession] = None
    pump_task: Optional[asyncio.Task] = None
    timeout_task: Optional[asyncio.Task] = None


class SessionCoordinator(AsyncIOEventEmitter):
    """아바타 세션 연결 수명주기 관리 클래스.

    Attributes:
        settings (SessionSettings): connect() 시점에 읽히는 설정
        media_capture (MediaCapture): 마이크 획득/해제 담당
        channel_factory (Callable): SignalingChannel 생성 함수
        peer_session_factory (Callable): PeerSession 생성 함수 (local_track 키워드 인자)
        negotiation_timeout (float): 협상 타임아웃 (초, 0 이하이면 비활성)
    """

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        media_capture: Optional[MediaCapture] = None,
        channel_factory: Callable[[], SignalingChannel] = SignalingChannel,
        peer_session_factory: Callable[..., PeerSession] = PeerSession,
        negotiation_timeout: Optional[float] = None,
    ):
        super().__init__()
        self.settings = settings or get_session_settings()
        self.media_capture = media_capture or MediaCapture(
            device=self.settings.AUDIO_DEVICE,
            format=self.settings.AUDIO_FORMAT,
        )
        self.channel_factory = channel_factory
        self.peer_session_factory = peer_session_factory
        self.negotiation_timeout = (
            connection_config.NEGOTIATION_TIMEOUT
            if negotiation_timeout is None else negotiation_timeout
        )

        self._state = SessionState.DISCONNECTED
        self._error: Optional[str] = None
        self._last_exception: Optional[SessionError] = None
        self._remote_track = None
        self._epoch = 0
        self._attempt: Optional[_Attempt] = None

    # ------------------------------------------------------------------
    # 공개 상태
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        """UI에 표시할 에러 메시지 (없으면 None)."""
        return self._error

    @property
    def last_exception(self) -> Optional[SessionError]:
        return self._last_exception

    @property
    def remote_track(self):
        return self._remote_track

    @property
    def local_media(self) -> Optional[LocalMediaHandle]:
        if self._attempt is None:
            return None
        return self._attempt.media

    @property
    def microphone_enabled(self) -> bool:
        handle = self.local_media
        return handle is not None and handle.enabled

    def dismiss_error(self) -> None:
        self._set_error(None)

    async def wait_for_state(self, *states: SessionState, timeout: Optional[float] = None) -> SessionState:
        """지정한 상태 중 하나가 될 때까지 대기합니다.

        Raises:
            asyncio.TimeoutError: timeout 내에 도달하지 못한 경우
        """
        if self._state in states:
            return self._state

        future = asyncio.get_running_loop().create_future()

        def listener(state: SessionState):
            if state in states and not future.done():
                future.set_result(state)

        self.on("statechange", listener)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.remove_listener("statechange", listener)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.info(f"[WebRTC] 세션 상태: {self._state.value} → {state.value}")
        self._state = state
        self.emit("statechange", state)

    def _set_error(self, message: Optional[str]) -> None:
        if message == self._error:
            return
        self._error = message
        self.emit("errorchange", message)

    def _is_current(self, attempt: _Attempt) -> bool:
        return attempt is self._attempt and attempt.epoch == self._epoch

    # ------------------------------------------------------------------
    # connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """새 연결 시도를 시작합니다.

        마이크 획득, 시그널링 연결, 피어 세션 생성, ready 전송까지 수행하고 반환합니다.
        이후 협상은 pump 태스크에서 진행되며 결과는 statechange 이벤트로 전달됩니다.

        Returns:
            bool: ready 전송까지 성공했으면 True. 실패했거나 도중에 disconnect()로
                중단되었거나 이미 연결 중이면 False

        Note:
            - Connecting/Connected 상태에서 호출하면 경고 후 무시
            - 각 대기 지점 이후 세대가 바뀌었으면 획득한 리소스를 해제하고 중단
        """
        if self._state in (SessionState.CONNECTING, SessionState.CONNECTED):
            logger.warning(f"[WebRTC] 이미 {self._state.value} 상태 - connect() 무시")
            return False

        self._epoch += 1
        attempt = _Attempt(epoch=self._epoch)
        self._attempt = attempt

        # 설정은 시도마다 한 번만 읽음
        url = self.settings.SIGNALING_URL
        constraints = self.settings.media_constraints()

        self._last_exception = None
        self._set_error(None)
        self._set_state(SessionState.CONNECTING)
        logger.info(f"[WebRTC] 연결 시작 (시도 #{attempt.epoch}, url={url})")

        # 1. 마이크 획득
        try:
            handle = await self.media_capture.acquire(constraints)
        except MediaError as e:
            await self._abort(attempt, e, SessionState.DISCONNECTED)
            return False

        if not self._is_current(attempt):
            logger.info(f"[WebRTC] 중단된 시도 #{attempt.epoch} - 획득한 마이크 해제")
            self.media_capture.release(handle)
            return False

        attempt.media = handle
        self.emit("localstream", handle)

        # 2. 시그널링 채널 연결
        channel = self.channel_factory()
        attempt.channel = channel
        channel.on_message(lambda message: self._post(attempt, EventKind.MESSAGE, message))
        channel.on_close(lambda reason: self._post(attempt, EventKind.CHANNEL_CLOSED, reason))

        try:
            await channel.open(url)
        except ChannelUnavailable as e:
            await self._abort(attempt, e, SessionState.DISCONNECTED)
            return False

        if not self._is_current(attempt):
            await channel.close()
            return False

        # 3. 피어 세션 생성
        peer = self.peer_session_factory(local_track=handle.track)
        attempt.peer = peer
        peer.on_local_candidate(lambda candidate: self._post(attempt, EventKind.LOCAL_CANDIDATE, candidate))
        peer.on_remote_track(lambda track: self._post(attempt, EventKind.REMOTE_TRACK, track))
        peer.on_state_change(lambda state: self._post(attempt, EventKind.TRANSPORT_STATE, state))

        try:
            await peer.initialize()
        except SessionError as e:
            await self._abort(attempt, e, SessionState.DISCONNECTED)
            return False

        if not self._is_current(attempt):
            return False

        # 4. 이벤트 처리 시작 후 ready 전송
        attempt.pump_task = asyncio.create_task(self._pump(attempt))

        try:
            await channel.send(ReadyMessage())
        except ChannelUnavailable as e:
            await self._abort(attempt, e, SessionState.DISCONNECTED)
            return False

        if not self._is_current(attempt):
            return False

        if self.negotiation_timeout and self.negotiation_timeout > 0:
            attempt.timeout_task = asyncio.create_task(self._watchdog(attempt))

        logger.info(f"[WebRTC] ready 전송 완료 (시도 #{attempt.epoch}) - 원격 피어 대기")
        return True

    async def disconnect(self) -> None:
        """모든 리소스를 해제하고 Disconnected 상태로 전환합니다. 여러 번 호출해도 안전합니다."""
        if self._attempt is not None:
            logger.info(f"[WebRTC] 연결 해제 요청 (상태: {self._state.value})")
        await self._teardown()
        self._set_error(None)
        self._set_state(SessionState.DISCONNECTED)

    def toggle_microphone(self) -> bool:
        """마이크 음소거를 토글합니다.

        Returns:
            bool: 토글 후 마이크 활성화 여부

        Raises:
            NotConnected: Connected 상태가 아닌 경우
        """
        handle = self.local_media
        if self._state != SessionState.CONNECTED or handle is None:
            raise NotConnected()
        return self.media_capture.set_track_enabled(handle, not handle.enabled)

    # ------------------------------------------------------------------
    # 이벤트 처리
    # ------------------------------------------------------------------

    def _post(self, attempt: _Attempt, kind: EventKind, payload: Any = None) -> None:
        if not self._is_current(attempt):
            logger.debug(f"[WebRTC] 중단된 시도 #{attempt.epoch}의 이벤트 무시: {kind.value}")
            return
        attempt.queue.put_nowait(SessionEvent(kind, payload))

    async def _watchdog(self, attempt: _Attempt) -> None:
        await asyncio.sleep(self.negotiation_timeout)
        self._post(attempt, EventKind.TIMEOUT)

    async def _pump(self, attempt: _Attempt) -> None:
        """시도별 이벤트 큐를 순서대로 처리합니다. 상태 변경은 여기서만 일어납니다."""
        while self._is_current(attempt):
            event = await attempt.queue.get()
            if not self._is_current(attempt):
                break
            try:
                await self._handle_event(attempt, event)
            except SessionError as e:
                target = SessionState.FAILED if isinstance(e, TransportFailed) else SessionState.DISCONNECTED
                await self._abort(attempt, e, target)
            except Exception as e:
                logger.error(f"[WebRTC] 이벤트 처리 중 예외: {event.kind.value}: {e}", exc_info=True)
                await self._abort(attempt, TransportFailed(str(e)), SessionState.FAILED)

    async def _handle_event(self, attempt: _Attempt, event: SessionEvent) -> None:
        if event.kind == EventKind.MESSAGE:
            await self._handle_message(attempt, event.payload)

        elif event.kind == EventKind.LOCAL_CANDIDATE:
            await attempt.channel.send(IceCandidateMessage(candidate=event.payload))

        elif event.kind == EventKind.REMOTE_TRACK:
            self._remote_track = event.payload
            self.emit("track", event.payload)

        elif event.kind == EventKind.TRANSPORT_STATE:
            await self._handle_transport_state(attempt, event.payload)

        elif event.kind == EventKind.CHANNEL_CLOSED:
            if self._state in (SessionState.CONNECTING, SessionState.CONNECTED):
                logger.warning(f"[WebRTC] 시그널링 채널 예기치 않게 종료: {event.payload}")
                await self._abort(
                    attempt,
                    ChannelUnavailable(f"Signaling channel closed: {event.payload}"),
                    SessionState.DISCONNECTED,
                )

        elif event.kind == EventKind.TIMEOUT:
            if self._state == SessionState.CONNECTING:
                logger.error(f"[WebRTC] 협상 타임아웃 ({self.negotiation_timeout}s)")
                raise TransportFailed(f"Negotiation timed out after {self.negotiation_timeout}s")

    async def _handle_message(self, attempt: _Attempt, message) -> None:
        peer = attempt.peer

        if isinstance(message, ReadyMessage):
            if peer.negotiation_state != NegotiationState.IDLE:
                logger.info(f"[WebRTC] ready 수신 - 협상 진행 중이므로 무시 ({peer.negotiation_state.value})")
                return
            logger.info("[WebRTC] 원격 ready 수신 - offer 생성")
            offer = await peer.create_local_offer()
            if self._is_current(attempt):
                await attempt.channel.send(OfferMessage(offer=offer))

        elif isinstance(message, OfferMessage):
            logger.info("[WebRTC] 원격 offer 수신 - answer 생성")
            answer = await peer.apply_remote_offer(message.offer)
            if self._is_current(attempt):
                await attempt.channel.send(AnswerMessage(answer=answer))

        elif isinstance(message, AnswerMessage):
            logger.info("[WebRTC] 원격 answer 수신")
            await peer.apply_remote_answer(message.answer)

        elif isinstance(message, IceCandidateMessage):
            await peer.add_remote_candidate(message.candidate)

    async def _handle_transport_state(self, attempt: _Attempt, transport_state: str) -> None:
        if transport_state == "connected":
            if self._state == SessionState.CONNECTING:
                self._cancel_watchdog(attempt)
                self._set_error(None)
                self._set_state(SessionState.CONNECTED)

        elif transport_state == "failed":
            if self._state in (SessionState.CONNECTING, SessionState.CONNECTED):
                raise TransportFailed("Peer transport failed")

        elif transport_state == "disconnected":
            # 일시적인 네트워크 끊김은 상태를 바꾸지 않음
            logger.warning("[WebRTC] transport 일시 끊김 - 복구 대기")

    def _cancel_watchdog(self, attempt: _Attempt) -> None:
        task, attempt.timeout_task = attempt.timeout_task, None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # 실패 처리 / 정리
    # ------------------------------------------------------------------

    async def _abort(self, attempt: _Attempt, error: SessionError, target: SessionState) -> None:
        """현재 시도를 실패 처리합니다. 중단된 시도에 대해서는 아무 동작도 하지 않습니다."""
        if not self._is_current(attempt):
            return
        logger.error(f"[WebRTC] 연결 실패 ({type(error).__name__}): {error}")
        self._last_exception = error
        self._set_error(error.user_message)
        await self._teardown()
        self._set_state(target)

    async def _teardown(self) -> None:
        """현재 시도의 리소스를 마이크 → 피어 → 채널 순서로 해제합니다."""
        attempt, self._attempt = self._attempt, None
        self._epoch += 1
        if attempt is None:
            return

        current = asyncio.current_task()
        for task in (attempt.timeout_task, attempt.pump_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if attempt.media is not None:
            try:
                self.media_capture.release(attempt.media)
            except Exception as e:
                logger.error(f"[WebRTC] 마이크 해제 실패: {e}", exc_info=True)
            self.emit("localstream", None)

        if attempt.peer is not None:
            try:
                await attempt.peer.close()
            except Exception as e:
                logger.error(f"[WebRTC] 피어 세션 종료 실패: {e}", exc_info=True)

        if attempt.channel is not None:
            try:
                await attempt.channel.close()
            except Exception as e:
                logger.error(f"[WebRTC] 시그널링 채널 종료 실패: {e}", exc_info=True)

        self._remote_track = None
        logger.info(f"[WebRTC] 시도 #{attempt.epoch} 리소스 정리 완료")


__all__ = ["SessionCoordinator", "SessionState", "SessionEvent", "EventKind"]
