"""시그널링 중계 룸 관리 모듈.

중계 서버에서 두 피어를 하나의 룸으로 묶고, 한쪽에서 받은 시그널링 메시지를
다른 한쪽에 전달할 수 있도록 상대 피어를 조회합니다.

주요 기능:
    - 룸 자동 생성/삭제 (비어있을 때 자동 삭제)
    - 룸당 최대 2명 (세 번째 참가자는 RoomFull)
    - 상대 피어 조회
    - 서버 종료 시 모든 WebSocket 정리

Architecture:
    - rooms: Dict[str, Dict[str, Peer]] - 룸 이름 → 참가자 맵
    - peer_to_room: Dict[str, str] - 참가자 ID → 룸 이름 (빠른 조회용)

Examples:
    >>> manager = RoomManager()
    >>> manager.join_room("default", "peer-123", websocket)
    >>> partner = manager.get_partner("peer-123")
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

MAX_PEERS_PER_ROOM = 2


class RoomFull(Exception):
    """룸 정원 초과."""


@dataclass
class Peer:
    """룸에 참가한 피어.

    Attributes:
        peer_id (str): 피어 고유 식별자 (UUID)
        websocket (WebSocket): 피어와의 WebSocket 연결
        joined_at (datetime): 입장 시각
    """
    peer_id: str
    websocket: WebSocket
    joined_at: datetime = field(default_factory=datetime.now)


class RoomManager:
    """1:1 시그널링 룸 관리 클래스.

    Thread Safety:
        - asyncio 단일 스레드 환경에서 동작
    """

    def __init__(self, max_peers: int = MAX_PEERS_PER_ROOM):
        self.max_peers = max_peers

        # room_name -> {peer_id: Peer}
        self.rooms: Dict[str, Dict[str, Peer]] = {}

        # peer_id -> room_name (for quick lookup)
        self.peer_to_room: Dict[str, str] = {}

    def join_room(self, room_name: str, peer_id: str, websocket: WebSocket) -> Peer:
        """피어를 룸에 추가합니다.

        Args:
            room_name (str): 참가할 룸 이름 (없으면 생성)
            peer_id (str): 피어 ID
            websocket (WebSocket): 피어 WebSocket

        Returns:
            Peer: 추가된 피어

        Raises:
            RoomFull: 룸에 이미 max_peers 명이 있는 경우
        """
        room = self.rooms.get(room_name, {})
        if peer_id not in room and len(room) >= self.max_peers:
            logger.warning(f"[Signaling] 룸 '{room_name}' 정원 초과 - 피어 {peer_id[:8]} 거부")
            raise RoomFull(f"Room '{room_name}' is full")

        if room_name not in self.rooms:
            self.rooms[room_name] = room
            logger.info(f"[Signaling] 룸 '{room_name}' 생성")

        peer = Peer(peer_id=peer_id, websocket=websocket)
        room[peer_id] = peer
        self.peer_to_room[peer_id] = room_name

        logger.info(f"[Signaling] 피어 {peer_id[:8]} 룸 '{room_name}' 입장 ({len(room)}/{self.max_peers})")
        return peer

    def leave_room(self, peer_id: str) -> Optional[str]:
        """피어를 현재 룸에서 제거합니다.

        Returns:
            Optional[str]: 피어가 속해있던 룸 이름 (없으면 None)
        """
        room_name = self.peer_to_room.pop(peer_id, None)
        if not room_name:
            return None

        room = self.rooms.get(room_name)
        if room is None or peer_id not in room:
            return None

        del room[peer_id]
        if not room:
            del self.rooms[room_name]
            logger.info(f"[Signaling] 룸 '{room_name}' 삭제 (비어있음)")
        else:
            logger.info(f"[Signaling] 피어 {peer_id[:8]} 룸 '{room_name}' 퇴장 ({len(room)}명 남음)")

        return room_name

    def get_partner(self, peer_id: str) -> Optional[Peer]:
        """같은 룸의 상대 피어를 반환합니다."""
        room_name = self.peer_to_room.get(peer_id)
        if not room_name:
            return None
        for other_id, peer in self.rooms.get(room_name, {}).items():
            if other_id != peer_id:
                return peer
        return None

    def get_room_peers(self, room_name: str) -> List[Peer]:
        return list(self.rooms.get(room_name, {}).values())

    def get_room_count(self, room_name: str) -> int:
        return len(self.rooms.get(room_name, {}))

    def get_room_list(self) -> List[dict]:
        """모든 룸 정보를 반환합니다. (헬스체크/모니터링용)"""
        return [
            {
                "room_name": room_name,
                "peer_count": len(peers),
                "peers": [
                    {"peer_id": p.peer_id, "joined_at": p.joined_at.isoformat()}
                    for p in peers.values()
                ],
            }
            for room_name, peers in self.rooms.items()
        ]

    async def close_all(self, code: int = 1001) -> None:
        """모든 피어 WebSocket을 닫고 룸을 비웁니다."""
        peers = [peer for room in self.rooms.values() for peer in room.values()]
        for peer in peers:
            try:
                await peer.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"[Signaling] 피어 {peer.peer_id[:8]} 종료 중 오류 무시: {e}")

        self.rooms.clear()
        self.peer_to_room.clear()
        if peers:
            logger.info(f"[Signaling] 전체 피어 {len(peers)}명 연결 종료")


__all__ = ["MAX_PEERS_PER_ROOM", "Peer", "RoomFull", "RoomManager"]
