"""공유 의존성 모듈.

시그널링 중계 서버 접근 토큰 검증을 정의합니다.
ACCESS_PASSWORD가 비어있으면 모든 요청을 허용합니다.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException

from avatar_session.webrtc.config import get_session_settings

logger = logging.getLogger(__name__)


def token_matches(token: Optional[str]) -> bool:
    """토큰이 설정된 접근 비밀번호와 일치하는지 확인합니다. (비밀번호 미설정 시 항상 True)"""
    expected = get_session_settings().ACCESS_PASSWORD
    if not expected:
        return True
    if not token:
        return False
    return secrets.compare_digest(token.encode(), expected.encode())


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Authorization: Bearer <token> 헤더를 검증합니다.

    Raises:
        HTTPException: 401 - 헤더 누락, 형식 오류, 토큰 불일치
    """
    if token_matches(None):
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if not token_matches(token):
        logger.warning("[Signaling] ICE 서버 요청 인증 실패")
        raise HTTPException(status_code=401, detail="Invalid password")
    return True


def verify_ws_token(token: Optional[str]) -> bool:
    """/ws/rtc 쿼리 파라미터 토큰 검증."""
    if token_matches(token):
        return True
    logger.warning("[Signaling] WebSocket 토큰 검증 실패")
    return False
