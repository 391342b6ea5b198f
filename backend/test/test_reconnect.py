"""ReconnectingSession / 백오프 계산 테스트."""

import asyncio

import pytest

from avatar_session.webrtc.coordinator import SessionState
from avatar_session.webrtc.errors import ChannelUnavailable
from avatar_session.webrtc.reconnect import ReconnectingSession, calculate_backoff_delay


def test_backoff_delay_grows_and_caps():
    delays = [calculate_backoff_delay(attempt, base_delay=1.0, max_delay=5.0) for attempt in range(5)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_custom_factor():
    assert calculate_backoff_delay(2, base_delay=0.5, backoff_factor=3.0) == pytest.approx(4.5)


def test_max_attempts_must_be_positive(harness):
    with pytest.raises(ValueError):
        ReconnectingSession(harness.coordinator, max_attempts=0)


async def test_retries_until_connected(harness, wait_until):
    harness.channels.fail_open = ChannelUnavailable("refused")
    harness.channels.fail_times = 1
    session = ReconnectingSession(harness.coordinator, max_attempts=3, base_delay=0.01)

    task = session.start()
    await wait_until(lambda: harness.peers.instances)
    harness.peer.emit_state("connected")

    assert await asyncio.wait_for(task, 2) is True
    assert session.attempts == 2
    assert len(harness.channels.instances) == 2
    assert harness.coordinator.state == SessionState.CONNECTED


async def test_gives_up_after_max_attempts(harness):
    harness.channels.fail_open = ChannelUnavailable("refused")
    session = ReconnectingSession(harness.coordinator, max_attempts=3, base_delay=0.01)

    assert await asyncio.wait_for(session.run(), 2) is False
    assert session.attempts == 3
    assert len(harness.channels.instances) == 3
    assert harness.coordinator.state == SessionState.DISCONNECTED
    assert harness.coordinator.error == "WebSocket connection error"


async def test_retries_after_transport_failure(harness, wait_until):
    session = ReconnectingSession(harness.coordinator, max_attempts=2, base_delay=0.01)

    task = session.start()
    await wait_until(lambda: len(harness.peers.instances) == 1)
    harness.peer.emit_state("failed")
    await wait_until(lambda: len(harness.peers.instances) == 2)
    harness.peer.emit_state("connected")

    assert await asyncio.wait_for(task, 2) is True
    assert session.attempts == 2


async def test_cancel_stops_retrying(harness, wait_until):
    harness.channels.fail_open = ChannelUnavailable("refused")
    session = ReconnectingSession(harness.coordinator, max_attempts=10, base_delay=10.0)

    task = session.start()
    await wait_until(lambda: harness.channels.instances)
    await session.cancel()

    assert task.cancelled()
    assert len(harness.channels.instances) == 1
    await session.cancel()
