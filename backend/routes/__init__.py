"""FastAPI 라우터 모듈.

시그널링 중계 서버의 WebSocket/HTTP 엔드포인트를 제공합니다.
"""

from .health import router as health_router
from .signaling import router as signaling_router, init_managers as init_signaling_managers, get_room_manager
from .deps import verify_auth_header, verify_ws_token

__all__ = [
    "health_router",
    "signaling_router",
    "init_signaling_managers",
    "get_room_manager",
    "verify_auth_header",
    "verify_ws_token",
]
