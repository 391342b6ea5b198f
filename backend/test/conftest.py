"""
Pytest configuration file for the avatar session test suite.

This file contains fixtures that are shared across multiple test files.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

import pytest

from avatar_session.webrtc.config import SessionSettings
from avatar_session.webrtc.coordinator import SessionCoordinator

from fakes import ChannelFactory, PeerFactory, RecordingCapture


@pytest.fixture(autouse=True)
def quiet_media_loggers():
    """aioice/aiortc 디버그 로그 억제"""
    for name in ("aioice", "aiortc"):
        logging.getLogger(name).setLevel(logging.WARNING)
    yield


@pytest.fixture
def wait_until():
    """조건이 참이 될 때까지 이벤트 루프를 양보하며 대기하는 헬퍼."""

    async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within timeout")
            await asyncio.sleep(interval)

    return _wait_until


@pytest.fixture
def settings():
    return SessionSettings(SIGNALING_URL="ws://relay.test/ws/rtc")


@dataclass
class SessionHarness:
    """코디네이터와 가짜 하위 컴포넌트 묶음."""

    coordinator: SessionCoordinator
    capture: RecordingCapture
    channels: ChannelFactory
    peers: PeerFactory
    log: list
    states: List = field(default_factory=list)
    errors: List = field(default_factory=list)

    @property
    def channel(self):
        return self.channels.instances[-1]

    @property
    def peer(self):
        return self.peers.instances[-1]


def build_harness(settings, negotiation_timeout: float = 0) -> SessionHarness:
    log: list = []
    capture = RecordingCapture(log)
    channels = ChannelFactory(log)
    peers = PeerFactory(log)
    coordinator = SessionCoordinator(
        settings=settings,
        media_capture=capture,
        channel_factory=channels,
        peer_session_factory=peers,
        negotiation_timeout=negotiation_timeout,
    )
    harness = SessionHarness(coordinator, capture, channels, peers, log)

    def on_state(state):
        harness.states.append(state)
        log.append(f"state:{state.value}")

    coordinator.on("statechange", on_state)
    coordinator.on("errorchange", harness.errors.append)
    return harness


@pytest.fixture
async def harness(settings):
    h = build_harness(settings)
    yield h
    await h.coordinator.disconnect()


@pytest.fixture
async def harness_factory(settings):
    """협상 타임아웃 등을 바꿔 하네스를 만드는 팩토리."""
    created = []

    def _factory(**kwargs) -> SessionHarness:
        h = build_harness(settings, **kwargs)
        created.append(h)
        return h

    yield _factory
    for h in created:
        await h.coordinator.disconnect()
