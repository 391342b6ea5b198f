"""테스트용 가짜 컴포넌트.

코디네이터 테스트에서 실제 WebSocket/aiortc 대신 사용하는 채널, 피어 세션,
마이크 플레이어를 정의합니다.
"""

import asyncio
import fractions
import inspect
from typing import List, Optional

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame

from avatar_session.shared.messages import SessionDescription
from avatar_session.webrtc.errors import ChannelUnavailable, NegotiationError
from avatar_session.webrtc.media import MediaCapture
from avatar_session.webrtc.peer_session import NegotiationState

SAMPLE_RATE = 48000
FRAME_SAMPLES = 960


def make_frame(amplitude: float = 0.5, samples: int = FRAME_SAMPLES, pts: int = 0) -> AudioFrame:
    """s16 모노 사인파 프레임 생성 (amplitude는 0.0~1.0)."""
    t = (np.arange(samples) + pts) / SAMPLE_RATE
    wave = amplitude * np.sin(2 * np.pi * 440 * t)
    data = (wave * 32767).astype(np.int16).reshape(1, -1)
    frame = AudioFrame.from_ndarray(data, format="s16", layout="mono")
    frame.sample_rate = SAMPLE_RATE
    frame.pts = pts
    frame.time_base = fractions.Fraction(1, SAMPLE_RATE)
    return frame


class ToneTrack(MediaStreamTrack):
    """20ms 사인파 프레임을 생성하는 가짜 마이크 트랙."""
    kind = "audio"

    def __init__(self, amplitude: float = 0.5, interval: float = 0.005):
        super().__init__()
        self.amplitude = amplitude
        self.interval = interval
        self._pts = 0

    async def recv(self):
        if self.readyState != "live":
            raise MediaStreamError
        await asyncio.sleep(self.interval)
        frame = make_frame(self.amplitude, pts=self._pts)
        self._pts += FRAME_SAMPLES
        return frame


class FakePlayer:
    """MediaPlayer(file, format=, options=) 대체."""

    def __init__(self, file, format=None, options=None):
        self.file = file
        self.format = format
        self.options = options
        self.audio = ToneTrack()
        self.video = None


class RecordingCapture(MediaCapture):
    """획득/해제를 기록하는 MediaCapture.

    Attributes:
        acquire_error: acquire()에서 발생시킬 예외
        gate: 설정되면 acquire()가 이 이벤트를 기다림
    """

    def __init__(self, log: Optional[list] = None):
        super().__init__(format="fake", player_factory=FakePlayer)
        self.log = log if log is not None else []
        self.acquire_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.pending = False
        self.handles = []
        self.released = []

    async def acquire(self, constraints=None):
        self.pending = True
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.acquire_error is not None:
                raise self.acquire_error
            handle = await super().acquire(constraints)
        finally:
            self.pending = False
        self.handles.append(handle)
        return handle

    def release(self, handle):
        if handle is not None and not handle.released:
            self.released.append(handle)
            self.log.append("media")
        super().release(handle)


async def _call(handler, *args):
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class FakeChannel:
    """SignalingChannel 대체. 전송 메시지를 기록하고 수신을 흉내냅니다."""

    def __init__(self, log: list, fail_open: Optional[Exception] = None,
                 open_gate: Optional[asyncio.Event] = None):
        self.log = log
        self.fail_open = fail_open
        self.open_gate = open_gate
        self.url: Optional[str] = None
        self.sent: list = []
        self.close_calls = 0
        self.opening = False
        self._open = False
        self._closed = False
        self._message_handlers: list = []
        self._close_handlers: list = []
        self.close_notifications = 0

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    def on_message(self, handler):
        self._message_handlers.append(handler)

    def on_close(self, handler):
        self._close_handlers.append(handler)

    async def open(self, url: str):
        self.url = url
        self.opening = True
        try:
            if self.open_gate is not None:
                await self.open_gate.wait()
            if self.fail_open is not None:
                raise self.fail_open
            if self._closed:
                raise ChannelUnavailable("Channel closed while opening")
            self._open = True
        finally:
            self.opening = False

    async def send(self, message):
        if not self.is_open:
            raise ChannelUnavailable("Signaling channel is not open")
        self.sent.append(message)

    async def close(self):
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self.log.append("channel")
        await self._notify_close("closed locally")

    async def deliver(self, message):
        for handler in list(self._message_handlers):
            await _call(handler, message)

    async def remote_close(self, reason: str = "closed by server"):
        if self._closed:
            return
        self._closed = True
        await self._notify_close(reason)

    async def _notify_close(self, reason: str):
        self.close_notifications += 1
        for handler in list(self._close_handlers):
            await _call(handler, reason)

    def sent_types(self) -> List[str]:
        return [message.type for message in self.sent]


class ChannelFactory:
    """FakeChannel 생성 및 기록."""

    def __init__(self, log: list):
        self.log = log
        self.instances: List[FakeChannel] = []
        self.fail_open: Optional[Exception] = None
        self.fail_times: Optional[int] = None
        self.open_gate: Optional[asyncio.Event] = None

    def __call__(self) -> FakeChannel:
        fail = self.fail_open
        if self.fail_times is not None and len(self.instances) >= self.fail_times:
            fail = None
        channel = FakeChannel(self.log, fail_open=fail, open_gate=self.open_gate)
        self.instances.append(channel)
        return channel


class FakePeerSession:
    """PeerSession 대체. 협상 하위 상태만 흉내냅니다."""

    def __init__(self, log: list, local_track=None):
        self.log = log
        self.local_track = local_track
        self.negotiation_state = NegotiationState.IDLE
        self.initialized = False
        self.close_calls = 0
        self.offers: List[str] = []
        self.answers: List[str] = []
        self.candidates: list = []
        self._local_candidate_handlers: list = []
        self._remote_track_handlers: list = []
        self._state_handlers: list = []

    def on_local_candidate(self, handler):
        self._local_candidate_handlers.append(handler)

    def on_remote_track(self, handler):
        self._remote_track_handlers.append(handler)

    def on_state_change(self, handler):
        self._state_handlers.append(handler)

    async def initialize(self):
        if self.negotiation_state == NegotiationState.CLOSED:
            raise NegotiationError("Peer session already closed")
        self.initialized = True

    async def create_local_offer(self):
        if self.negotiation_state != NegotiationState.IDLE:
            raise NegotiationError("not idle")
        self.negotiation_state = NegotiationState.OFFER_SENT
        return SessionDescription(sdp="local-offer", type="offer")

    async def apply_remote_offer(self, offer):
        if self.negotiation_state == NegotiationState.OFFER_SENT:
            raise NegotiationError("glare")
        self.offers.append(offer.sdp)
        self.negotiation_state = NegotiationState.ANSWER_EXCHANGED
        return SessionDescription(sdp="local-answer", type="answer")

    async def apply_remote_answer(self, answer):
        if self.negotiation_state != NegotiationState.OFFER_SENT:
            raise NegotiationError("No outstanding local offer")
        self.answers.append(answer.sdp)
        self.negotiation_state = NegotiationState.ANSWER_EXCHANGED

    async def add_remote_candidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.close_calls += 1
        if self.negotiation_state == NegotiationState.CLOSED:
            return
        self.negotiation_state = NegotiationState.CLOSED
        self.log.append("peer")

    # 테스트에서 transport 이벤트를 발생시킬 때 사용
    def emit_state(self, state: str):
        for handler in list(self._state_handlers):
            handler(state)

    def emit_track(self, track):
        for handler in list(self._remote_track_handlers):
            handler(track)

    def emit_candidate(self, candidate):
        for handler in list(self._local_candidate_handlers):
            handler(candidate)


class PeerFactory:
    """FakePeerSession 생성 및 기록."""

    def __init__(self, log: list):
        self.log = log
        self.instances: List[FakePeerSession] = []

    def __call__(self, local_track=None) -> FakePeerSession:
        peer = FakePeerSession(self.log, local_track=local_track)
        self.instances.append(peer)
        return peer
