"""WebRTC 시그널링 중계 WebSocket 라우터.

같은 룸에 접속한 두 피어 사이에서 시그널링 메시지(offer, answer,
ice-candidate, ready)를 수신 순서대로 그대로 전달합니다.

Protocol:
    - 접속: /ws/rtc?room=<룸 이름>&token=<접근 토큰>
    - 룸당 최대 2명, 세 번째 접속은 close code 4003
    - 토큰 검증 실패 시 close code 4001
    - 형식이 잘못된 프레임과 바이너리 프레임은 전달하지 않고 발신자에게 error 프레임 응답
    - 상대 피어가 없으면 메시지는 버려짐 (상대가 나중에 ready를 보내면 협상 시작)
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from avatar_session.shared.messages import MessageFormatError, parse_message
from avatar_session.webrtc.room_manager import RoomFull, RoomManager
from .deps import verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_room_manager: Optional[RoomManager] = None


def init_managers(room_manager: RoomManager):
    """매니저 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 매니저 참조를 설정합니다.
    """
    global _room_manager
    _room_manager = room_manager
    logger.info("[Signaling] 시그널링 라우터 매니저 초기화 완료")


def get_room_manager() -> Optional[RoomManager]:
    return _room_manager


async def _send_error(websocket: WebSocket, message: str):
    await websocket.send_json({"type": "error", "data": {"message": message}})


@router.websocket("/ws/rtc")
async def rtc_signaling(
    websocket: WebSocket,
    room: str = Query("default"),
    token: Optional[str] = Query(None),
):
    """1:1 시그널링 중계 엔드포인트.

    Args:
        websocket: FastAPI WebSocket 연결 객체
        room: 룸 이름 (쿼리 파라미터)
        token: 인증 토큰 (쿼리 파라미터)
    """
    if _room_manager is None:
        logger.error("[Signaling] 매니저가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    peer_id = str(uuid.uuid4())

    try:
        _room_manager.join_room(room, peer_id, websocket)
    except RoomFull:
        await websocket.close(code=4003, reason="Room is full")
        return

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            raw = frame.get("text")
            if raw is None:
                logger.warning(f"[Signaling] 피어 {peer_id[:8]} 바이너리 프레임 거부")
                await _send_error(websocket, "Binary frames are not supported")
                continue

            try:
                message = parse_message(raw)
            except MessageFormatError as e:
                logger.warning(f"[Signaling] 피어 {peer_id[:8]} 잘못된 메시지: {e}")
                await _send_error(websocket, str(e))
                continue

            partner = _room_manager.get_partner(peer_id)
            if partner is None:
                logger.warning(f"[Signaling] 피어 {peer_id[:8]} {message.type} - 상대 없음, 메시지 버림")
                continue

            try:
                await partner.websocket.send_text(raw)
                logger.debug(f"[Signaling] {message.type}: {peer_id[:8]} → {partner.peer_id[:8]}")
            except Exception as e:
                logger.error(f"[Signaling] 피어 {partner.peer_id[:8]}에 전달 실패: {e}")

    except WebSocketDisconnect:
        logger.info(f"[Signaling] 피어 {peer_id[:8]} 연결 종료")
    finally:
        _room_manager.leave_room(peer_id)
