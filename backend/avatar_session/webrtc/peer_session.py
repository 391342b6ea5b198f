"""WebRTC 피어 세션 모듈.

원격 피어(아바타 미디어 엔진)와의 단일 RTCPeerConnection을 소유하고
offer/answer 협상, ICE candidate 교환, 트랙 연결, 연결 상태 관찰을 담당합니다.

주요 기능:
    - RTCPeerConnection 생성 (STUN/TURN 설정)
    - 로컬 offer 생성 (오디오 전용, 로컬 트랙 유무에 따라 sendrecv/recvonly)
    - 원격 offer 적용 및 answer 생성 (재협상 포함)
    - 원격 answer 적용
    - 원격 ICE candidate 적용 (remote description 이전 도착분은 버퍼링 후 재생)
    - 로컬 candidate / 원격 트랙 / 연결 상태 콜백

Negotiation State:
    IDLE ─ create_local_offer ──▶ OFFER_SENT ─ apply_remote_answer ──▶ ANSWER_EXCHANGED
     └── apply_remote_offer ──▶ OFFER_RECEIVED ─ (answer 생성) ──────▶ ANSWER_EXCHANGED
    close() 이후에는 CLOSED (재사용 불가)

    - 협상 실패 시 NegotiationError를 발생시키고 상태는 변경되지 않음
    - OFFER_SENT 상태에서 원격 offer 수신(glare)은 NegotiationError
    - ANSWER_EXCHANGED 상태에서 원격 offer 수신은 재협상으로 처리

Note:
    aiortc는 로컬 candidate를 trickle 하지 않고 SDP에 포함시킵니다.
    setLocalDescription 이후 SDP의 candidate를 하나씩 on_local_candidate 핸들러로
    전달하므로 trickle ICE를 기대하는 원격 피어와도 호환됩니다.

Examples:
    >>> session = PeerSession(local_track=handle.track)
    >>> session.on_state_change(lambda state: print(state))
    >>> await session.initialize()
    >>> offer = await session.create_local_offer()
    >>> await channel.send(OfferMessage(offer=offer))
    >>> await session.apply_remote_answer(answer)
    >>> await session.close()

See Also:
    aiortc Documentation: https://aiortc.readthedocs.io/
"""

import asyncio
import inspect
import logging
import uuid
from enum import Enum
from typing import Callable, List, Optional, Set

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import SessionDescription as ParsedSdp
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..shared.messages import IceCandidatePayload, SessionDescription
from .config import ice_config
from .errors import NegotiationError

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_EXCHANGED = "answer-exchanged"
    CLOSED = "closed"


def build_rtc_configuration(ice_servers: Optional[List[dict]] = None) -> RTCConfiguration:
    """ICE 서버 설정으로 RTCConfiguration을 생성합니다.

    Args:
        ice_servers (Optional[List[dict]]): {"urls", "username", "credential"} 목록.
            None이면 ICEServerConfig(STUN/TURN 환경변수 + 공개 STUN)를 사용.

    Returns:
        RTCConfiguration: aiortc 연결 설정
    """
    if ice_servers is None:
        ice_servers = ice_config.as_dicts()
        if not ice_config.has_turn_server:
            logger.debug("[WebRTC] TURN 서버 설정 없음 - STUN만 사용")

    servers = []
    for server in ice_servers:
        urls = server["urls"]
        servers.append(RTCIceServer(
            urls=urls if isinstance(urls, list) else [urls],
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    return RTCConfiguration(iceServers=servers)


class PeerSession:
    """원격 피어와의 협상 및 transport 연결을 담당하는 클래스.

    Attributes:
        session_id (str): 로그용 세션 식별자
        local_track (Optional[MediaStreamTrack]): 송신할 로컬 오디오 트랙
        pc (Optional[RTCPeerConnection]): initialize() 이후 생성되는 피어 연결
        negotiation_state (NegotiationState): 협상 하위 상태
    """

    def __init__(
        self,
        local_track: Optional[MediaStreamTrack] = None,
        ice_servers: Optional[List[dict]] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.local_track = local_track
        self.ice_servers = ice_servers
        self.pc: Optional[RTCPeerConnection] = None
        self.negotiation_state = NegotiationState.IDLE

        self._local_candidate_handlers: List[Callable] = []
        self._remote_track_handlers: List[Callable] = []
        self._state_handlers: List[Callable] = []

        self._pending_candidates: List[IceCandidatePayload] = []
        self._announced_candidates: Set[str] = set()
        self._track_attached = False

    # ------------------------------------------------------------------
    # 핸들러 등록
    # ------------------------------------------------------------------

    def on_local_candidate(self, handler: Callable) -> None:
        self._local_candidate_handlers.append(handler)

    def on_remote_track(self, handler: Callable) -> None:
        self._remote_track_handlers.append(handler)

    def on_state_change(self, handler: Callable) -> None:
        self._state_handlers.append(handler)

    @staticmethod
    def _dispatch(handlers: List[Callable], *args) -> None:
        for handler in list(handlers):
            result = handler(*args)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

    @property
    def connection_state(self) -> str:
        if self.pc is None:
            return "closed" if self.negotiation_state == NegotiationState.CLOSED else "new"
        return self.pc.connectionState

    @property
    def pending_candidate_count(self) -> int:
        return len(self._pending_candidates)

    # ------------------------------------------------------------------
    # 연결 생성
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """RTCPeerConnection을 생성하고 이벤트 핸들러를 등록합니다.

        Raises:
            NegotiationError: 이미 종료된 세션인 경우
        """
        if self.negotiation_state == NegotiationState.CLOSED:
            raise NegotiationError("Peer session already closed")
        if self.pc is not None:
            return

        pc = RTCPeerConnection(configuration=build_rtc_configuration(self.ice_servers))
        self.pc = pc
        logger.info(f"[WebRTC] 피어 {self.session_id[:8]} RTCPeerConnection 생성 완료")

        @pc.on("icecandidate")
        def on_ice_candidate(candidate):
            if candidate:
                self._announce_candidate(IceCandidatePayload(
                    candidate=f"candidate:{candidate_to_sdp(candidate)}",
                    sdp_mid=candidate.sdpMid,
                    sdp_mline_index=candidate.sdpMLineIndex,
                ))

        @pc.on("connectionstatechange")
        def on_connection_state_change():
            logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 연결 상태: {pc.connectionState}")
            self._dispatch(self._state_handlers, pc.connectionState)

        @pc.on("iceconnectionstatechange")
        def on_ice_connection_state_change():
            logger.debug(f"[WebRTC] 피어 {self.session_id[:8]} ICE 상태: {pc.iceConnectionState}")

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 원격 {track.kind} 트랙 수신")
            if track.kind != "audio":
                return
            self._dispatch(self._remote_track_handlers, track)

            @track.on("ended")
            def on_ended():
                logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 원격 {track.kind} 트랙 종료")

    def _require_pc(self) -> RTCPeerConnection:
        if self.negotiation_state == NegotiationState.CLOSED:
            raise NegotiationError("Peer session already closed")
        if self.pc is None:
            raise NegotiationError("Peer session is not initialized")
        return self.pc

    # ------------------------------------------------------------------
    # offer / answer
    # ------------------------------------------------------------------

    async def create_local_offer(self) -> SessionDescription:
        """로컬 offer를 생성하고 local description으로 설정합니다.

        Returns:
            SessionDescription: 원격 피어에 전달할 offer

        Raises:
            NegotiationError: 초기화 전이거나 IDLE 상태가 아닌 경우, offer 생성 실패 시
        """
        pc = self._require_pc()
        if self.negotiation_state != NegotiationState.IDLE:
            raise NegotiationError(f"Cannot create offer in state {self.negotiation_state.value}")

        try:
            if not pc.getTransceivers():
                if self.local_track is not None:
                    pc.addTrack(self.local_track)
                    self._track_attached = True
                else:
                    pc.addTransceiver("audio", direction="recvonly")

            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
        except Exception as e:
            logger.error(f"[WebRTC] 피어 {self.session_id[:8]} offer 생성 실패: {e}")
            raise NegotiationError(f"Failed to create offer: {e}") from e

        self.negotiation_state = NegotiationState.OFFER_SENT
        self._announce_local_description()

        direction = "sendrecv" if self._track_attached else "recvonly"
        logger.info(f"[WebRTC] 피어 {self.session_id[:8]} offer 생성 완료 (audio={direction})")
        return SessionDescription(sdp=pc.localDescription.sdp, type="offer")

    async def apply_remote_offer(self, offer: SessionDescription) -> SessionDescription:
        """원격 offer를 적용하고 answer를 생성합니다.

        Args:
            offer (SessionDescription): 원격 offer

        Returns:
            SessionDescription: 원격 피어에 전달할 answer

        Raises:
            NegotiationError: glare(OFFER_SENT), 잘못된 SDP, answer 생성 실패 시
        """
        pc = self._require_pc()
        previous = self.negotiation_state

        if previous == NegotiationState.OFFER_SENT:
            logger.warning(f"[WebRTC] 피어 {self.session_id[:8]} offer 충돌(glare) - 원격 offer 거부")
            raise NegotiationError("Remote offer received while local offer is outstanding")
        if previous == NegotiationState.OFFER_RECEIVED:
            raise NegotiationError("Remote offer is already being processed")

        if previous == NegotiationState.ANSWER_EXCHANGED:
            logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 재협상 offer 수신")

        self.negotiation_state = NegotiationState.OFFER_RECEIVED
        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer.sdp, type="offer"))

            # setRemoteDescription이 만든 transceiver에 로컬 트랙 연결
            if self.local_track is not None and not self._track_attached:
                pc.addTrack(self.local_track)
                self._track_attached = True

            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        except Exception as e:
            self.negotiation_state = previous
            logger.error(f"[WebRTC] 피어 {self.session_id[:8]} offer 처리 실패: {e}")
            raise NegotiationError(f"Failed to apply remote offer: {e}") from e

        self.negotiation_state = NegotiationState.ANSWER_EXCHANGED
        self._announce_local_description()
        await self._flush_pending_candidates()

        logger.info(f"[WebRTC] 피어 {self.session_id[:8]} answer 생성 완료")
        return SessionDescription(sdp=pc.localDescription.sdp, type="answer")

    async def apply_remote_answer(self, answer: SessionDescription) -> None:
        """원격 answer를 적용하여 로컬 offer 라운드를 완료합니다.

        Raises:
            NegotiationError: 대기 중인 로컬 offer가 없거나 SDP 적용 실패 시
        """
        pc = self._require_pc()
        if self.negotiation_state != NegotiationState.OFFER_SENT:
            raise NegotiationError(
                f"No outstanding local offer (state={self.negotiation_state.value})"
            )

        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer.sdp, type="answer"))
        except Exception as e:
            logger.error(f"[WebRTC] 피어 {self.session_id[:8]} answer 적용 실패: {e}")
            raise NegotiationError(f"Failed to apply remote answer: {e}") from e

        self.negotiation_state = NegotiationState.ANSWER_EXCHANGED
        await self._flush_pending_candidates()
        logger.info(f"[WebRTC] 피어 {self.session_id[:8]} answer 적용 완료")

    # ------------------------------------------------------------------
    # ICE candidate
    # ------------------------------------------------------------------

    async def add_remote_candidate(self, candidate: IceCandidatePayload) -> None:
        """원격 ICE candidate를 적용합니다. 예외를 발생시키지 않습니다.

        remote description이 아직 없으면 버퍼에 보관했다가 설정 직후 순서대로 적용합니다.
        적용할 수 없는 candidate는 로그를 남기고 버립니다.
        """
        if self.negotiation_state == NegotiationState.CLOSED or self.pc is None:
            logger.warning(f"[WebRTC] 피어 {self.session_id[:8]} 연결 없음 - ICE candidate 무시")
            return

        if self.pc.remoteDescription is None:
            self._pending_candidates.append(candidate)
            logger.debug(
                f"[WebRTC] 피어 {self.session_id[:8]} remote description 전 candidate 버퍼링 "
                f"({len(self._pending_candidates)}개)"
            )
            return

        await self._apply_candidate(candidate)

    async def _flush_pending_candidates(self) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        if pending:
            logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 버퍼링된 candidate {len(pending)}개 적용")
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, payload: IceCandidatePayload) -> None:
        candidate_str = payload.candidate
        if candidate_str.startswith("candidate:"):
            candidate_str = candidate_str[10:]

        if not candidate_str:
            logger.debug(f"[WebRTC] 피어 {self.session_id[:8]} end-of-candidates 수신")
            return

        try:
            ice_candidate = candidate_from_sdp(candidate_str)
            ice_candidate.sdpMid = payload.sdp_mid
            ice_candidate.sdpMLineIndex = payload.sdp_mline_index
            await self.pc.addIceCandidate(ice_candidate)
            logger.debug(f"[WebRTC] 피어 {self.session_id[:8]} ICE candidate 추가 완료")
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {self.session_id[:8]} ICE candidate 적용 실패, 무시: {e}")

    def _announce_local_description(self) -> None:
        """local description SDP에 포함된 candidate를 핸들러로 전달합니다."""
        parsed = ParsedSdp.parse(self.pc.localDescription.sdp)
        for index, media in enumerate(parsed.media):
            for candidate in media.ice_candidates:
                self._announce_candidate(IceCandidatePayload(
                    candidate=f"candidate:{candidate_to_sdp(candidate)}",
                    sdp_mid=media.rtp.muxId,
                    sdp_mline_index=index,
                ))

    def _announce_candidate(self, payload: IceCandidatePayload) -> None:
        if payload.candidate in self._announced_candidates:
            return
        self._announced_candidates.add(payload.candidate)
        self._dispatch(self._local_candidate_handlers, payload)

    # ------------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """피어 연결을 종료합니다. 여러 번 호출해도 안전합니다."""
        if self.negotiation_state == NegotiationState.CLOSED:
            return
        self.negotiation_state = NegotiationState.CLOSED
        self._pending_candidates.clear()

        if self.pc is not None:
            await self.pc.close()
        logger.info(f"[WebRTC] 피어 {self.session_id[:8]} 연결 종료")


__all__ = ["NegotiationState", "PeerSession", "build_rtc_configuration"]
