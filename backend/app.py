"""FastAPI WebRTC Signaling Relay Server.

아바타 세션 클라이언트와 아바타 미디어 엔진이 서로를 찾고 협상 메시지를
주고받을 수 있도록 1:1 시그널링 중계 서버를 제공합니다.

주요 기능:
    - 룸 기반 1:1 피어 매칭 (/ws/rtc?room=...)
    - offer/answer/ice-candidate/ready 메시지 검증 및 중계
    - ICE 서버 설정 제공 (/api/ice-servers)
    - 서버 상태 확인 (/api/health)
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - RoomManager: 룸 및 참가자 상태 관리
    - WebSocket: 시그널링 메시지 중계 (미디어는 피어 간 직접 전송)

Usage:
    python app.py
    uvicorn app:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from avatar_session.logging_config import cleanup_old_logs, setup_logging
from avatar_session.webrtc.config import get_session_settings, ice_config
from avatar_session.webrtc.room_manager import RoomManager
from routes import (
    health_router,
    init_signaling_managers,
    signaling_router,
    verify_auth_header,
)

logger = logging.getLogger(__name__)

# 글로벌 매니저 인스턴스
room_manager = RoomManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 시작: 로깅 초기화, 오래된 로그 정리
        - 종료: 모든 피어 WebSocket 정리
    """
    setup_logging(prefix="server")
    logger.info("WebRTC 시그널링 중계 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        retention = get_session_settings().LOG_RETENTION_DAYS
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({retention}일 이상)")

    yield

    logger.info("서버 종료 중...")
    await room_manager.close_all()


app = FastAPI(title="Avatar Session Signaling Relay", lifespan=lifespan)

# CORS - 개발 환경에서는 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 매니저 인스턴스 전달
init_signaling_managers(room_manager)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: 서버 상태 정보
    """
    return {"status": "ok", "service": "Avatar Session Signaling Relay"}


@app.get("/api/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """ICE 서버(STUN/TURN) 설정을 클라이언트에 제공합니다.

    TURN credentials는 서버 환경 변수에서만 관리되고 이 엔드포인트로만 전달됩니다.

    Returns:
        list: RTCPeerConnection iceServers 형식의 리스트

    Examples:
        [
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "turn:turn.example.com:3478", "username": "user", "credential": "pass"}
        ]
    """
    servers = ice_config.as_dicts()
    if ice_config.has_turn_server:
        logger.info("ICE 서버 제공: STUN + TURN")
    else:
        logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
    return servers


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
