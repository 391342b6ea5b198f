"""RoomManager 테스트."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from avatar_session.webrtc.room_manager import RoomFull, RoomManager


def _websocket():
    ws = MagicMock()
    ws.close = AsyncMock()
    return ws


def test_join_and_partner():
    manager = RoomManager()
    a, b = _websocket(), _websocket()

    manager.join_room("room-1", "peer-a", a)
    assert manager.get_partner("peer-a") is None

    manager.join_room("room-1", "peer-b", b)
    assert manager.get_partner("peer-a").websocket is b
    assert manager.get_partner("peer-b").websocket is a
    assert manager.get_room_count("room-1") == 2


def test_third_peer_rejected():
    manager = RoomManager()
    manager.join_room("room-1", "peer-a", _websocket())
    manager.join_room("room-1", "peer-b", _websocket())

    with pytest.raises(RoomFull):
        manager.join_room("room-1", "peer-c", _websocket())

    assert manager.get_room_count("room-1") == 2
    assert "peer-c" not in manager.peer_to_room


def test_rooms_are_isolated():
    manager = RoomManager()
    manager.join_room("room-1", "peer-a", _websocket())
    manager.join_room("room-2", "peer-b", _websocket())

    assert manager.get_partner("peer-a") is None
    assert manager.get_partner("peer-b") is None


def test_leave_room_deletes_empty_room():
    manager = RoomManager()
    manager.join_room("room-1", "peer-a", _websocket())
    manager.join_room("room-1", "peer-b", _websocket())

    assert manager.leave_room("peer-a") == "room-1"
    assert manager.get_room_count("room-1") == 1
    assert manager.get_partner("peer-b") is None

    assert manager.leave_room("peer-b") == "room-1"
    assert "room-1" not in manager.rooms
    assert manager.leave_room("peer-b") is None


def test_room_list():
    manager = RoomManager()
    manager.join_room("room-1", "peer-a", _websocket())

    rooms = manager.get_room_list()

    assert len(rooms) == 1
    assert rooms[0]["room_name"] == "room-1"
    assert rooms[0]["peer_count"] == 1
    assert rooms[0]["peers"][0]["peer_id"] == "peer-a"
    assert [p.peer_id for p in manager.get_room_peers("room-1")] == ["peer-a"]


async def test_close_all():
    manager = RoomManager()
    a, b = _websocket(), _websocket()
    b.close.side_effect = RuntimeError("already closed")
    manager.join_room("room-1", "peer-a", a)
    manager.join_room("room-2", "peer-b", b)

    await manager.close_all()

    a.close.assert_awaited_once_with(code=1001)
    b.close.assert_awaited_once_with(code=1001)
    assert manager.rooms == {}
    assert manager.peer_to_room == {}
