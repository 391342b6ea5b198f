"""PeerSession 테스트.

실제 aiortc RTCPeerConnection 두 개로 offer/answer 라운드와 candidate 버퍼링을 확인합니다.
ICE 서버는 사용하지 않습니다 (host candidate만 수집).
"""

import pytest

from avatar_session.shared.messages import IceCandidatePayload, SessionDescription
from avatar_session.webrtc.errors import NegotiationError
from avatar_session.webrtc.peer_session import (
    NegotiationState,
    PeerSession,
    build_rtc_configuration,
)

from fakes import ToneTrack

REMOTE_CANDIDATE = IceCandidatePayload(
    candidate="candidate:1 1 udp 2130706431 192.0.2.1 50000 typ host",
    sdp_mid="0",
    sdp_mline_index=0,
)

# ICE ufrag/pwd와 DTLS fingerprint가 없는 offer
OFFER_WITHOUT_ICE = (
    "v=0\r\n"
    "o=- 0 0 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:0\r\n"
    "a=sendrecv\r\n"
    "a=rtpmap:111 opus/48000/2\r\n"
)


@pytest.fixture
async def sessions():
    created = []

    async def _create(local_track=None) -> PeerSession:
        session = PeerSession(local_track=local_track, ice_servers=[])
        await session.initialize()
        created.append(session)
        return session

    yield _create
    for session in created:
        await session.close()


def test_build_rtc_configuration():
    config = build_rtc_configuration([
        {"urls": "stun:stun.example.com:3478"},
        {"urls": ["turn:turn.example.com:3478"], "username": "u", "credential": "p"},
    ])

    assert [server.urls for server in config.iceServers] == [
        ["stun:stun.example.com:3478"],
        ["turn:turn.example.com:3478"],
    ]
    assert config.iceServers[1].username == "u"
    assert config.iceServers[1].credential == "p"


async def test_offer_requires_initialize():
    session = PeerSession(ice_servers=[])
    with pytest.raises(NegotiationError):
        await session.create_local_offer()


async def test_offer_without_track_is_receive_only(sessions):
    session = await sessions()
    offer = await session.create_local_offer()

    assert offer.type == "offer"
    assert "m=audio" in offer.sdp
    assert "m=video" not in offer.sdp
    assert "a=recvonly" in offer.sdp
    assert session.negotiation_state == NegotiationState.OFFER_SENT


async def test_offer_with_track_is_send_receive(sessions):
    session = await sessions(local_track=ToneTrack())
    offer = await session.create_local_offer()

    assert "a=sendrecv" in offer.sdp


async def test_second_offer_rejected(sessions):
    session = await sessions()
    await session.create_local_offer()

    with pytest.raises(NegotiationError):
        await session.create_local_offer()
    assert session.negotiation_state == NegotiationState.OFFER_SENT


async def test_offer_answer_round(sessions):
    offerer = await sessions()
    answerer = await sessions(local_track=ToneTrack())
    remote_tracks = []
    offerer.on_remote_track(remote_tracks.append)

    offer = await offerer.create_local_offer()
    answer = await answerer.apply_remote_offer(offer)
    assert answer.type == "answer"
    assert answerer.negotiation_state == NegotiationState.ANSWER_EXCHANGED

    await offerer.apply_remote_answer(answer)
    assert offerer.negotiation_state == NegotiationState.ANSWER_EXCHANGED

    # 원격 피어의 오디오 트랙이 offerer 쪽에 노출됨
    assert len(remote_tracks) == 1
    assert remote_tracks[0].kind == "audio"


async def test_local_candidates_announced_from_description(sessions):
    session = await sessions()
    announced = []
    session.on_local_candidate(announced.append)

    await session.create_local_offer()

    for payload in announced:
        assert payload.candidate.startswith("candidate:")
        assert payload.sdp_mid == "0"
        assert payload.sdp_mline_index == 0
    assert len({p.candidate for p in announced}) == len(announced)


async def test_answer_without_outstanding_offer(sessions):
    session = await sessions()
    with pytest.raises(NegotiationError):
        await session.apply_remote_answer(SessionDescription(sdp="v=0\r\n", type="answer"))
    assert session.negotiation_state == NegotiationState.IDLE


async def test_glare_rejects_remote_offer(sessions):
    local = await sessions()
    remote = await sessions()
    await local.create_local_offer()
    remote_offer = await remote.create_local_offer()

    with pytest.raises(NegotiationError):
        await local.apply_remote_offer(remote_offer)
    assert local.negotiation_state == NegotiationState.OFFER_SENT


async def test_malformed_offer_leaves_state_unchanged(sessions):
    session = await sessions()
    with pytest.raises(NegotiationError):
        await session.apply_remote_offer(SessionDescription(sdp=OFFER_WITHOUT_ICE, type="offer"))
    assert session.negotiation_state == NegotiationState.IDLE


async def test_candidates_buffered_until_remote_description(sessions):
    offerer = await sessions()
    answerer = await sessions(local_track=ToneTrack())

    await answerer.add_remote_candidate(REMOTE_CANDIDATE)
    await answerer.add_remote_candidate(IceCandidatePayload(candidate="", sdp_mid="0"))
    assert answerer.pending_candidate_count == 2

    offer = await offerer.create_local_offer()
    await answerer.apply_remote_offer(offer)

    assert answerer.pending_candidate_count == 0


async def test_invalid_candidate_is_dropped(sessions):
    offerer = await sessions()
    answerer = await sessions()
    await answerer.apply_remote_offer(await offerer.create_local_offer())

    await answerer.add_remote_candidate(IceCandidatePayload(candidate="candidate:nonsense", sdp_mid="0"))
    await answerer.add_remote_candidate(IceCandidatePayload(candidate="candidate:1 1 udp 1 192.0.2.1 1 typ host", sdp_mid="9"))

    assert answerer.negotiation_state == NegotiationState.ANSWER_EXCHANGED


async def test_close_is_idempotent(sessions):
    session = await sessions()
    await session.close()
    await session.close()

    assert session.negotiation_state == NegotiationState.CLOSED
    assert session.connection_state == "closed"

    # 종료 후 도착한 candidate는 무시
    await session.add_remote_candidate(REMOTE_CANDIDATE)
    with pytest.raises(NegotiationError):
        await session.create_local_offer()
    with pytest.raises(NegotiationError):
        await session.initialize()
