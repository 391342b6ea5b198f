"""설정 / 로깅 모듈 테스트."""

import os
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from avatar_session.logging_config import cleanup_old_logs
from avatar_session.webrtc.config import ICEServerConfig, MediaConstraints, SessionSettings


def test_settings_defaults():
    settings = SessionSettings()

    assert settings.SIGNALING_URL.startswith(("ws://", "wss://"))
    assert settings.media_constraints() == MediaConstraints()


def test_settings_media_constraints_follow_flags():
    settings = SessionSettings(ECHO_CANCELLATION=False, AUTO_GAIN_CONTROL=False)
    constraints = settings.media_constraints()

    assert constraints.echo_cancellation is False
    assert constraints.noise_suppression is True
    assert constraints.auto_gain_control is False
    assert constraints.sample_rate == 48000
    assert constraints.channels == 1


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("SIGNALING_URL", "wss://relay.example.com/ws/rtc")
    monkeypatch.setenv("NOISE_SUPPRESSION", "false")

    settings = SessionSettings()

    assert settings.SIGNALING_URL == "wss://relay.example.com/ws/rtc"
    assert settings.NOISE_SUPPRESSION is False


def test_settings_reject_http_url():
    with pytest.raises(ValidationError):
        SessionSettings(SIGNALING_URL="http://localhost:8000/ws/rtc")


def test_settings_log_level_normalized():
    assert SessionSettings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
    with pytest.raises(ValidationError):
        SessionSettings(LOG_LEVEL="loud")


def test_ice_servers_without_turn():
    config = ICEServerConfig.from_env({})

    assert not config.has_turn_server
    assert config.as_dicts() == [
        {"urls": "stun:stun.l.google.com:19302"},
        {"urls": "stun:stun1.l.google.com:19302"},
    ]


def test_ice_servers_with_turn():
    config = ICEServerConfig.from_env({
        "TURN_SERVER_URL": "turn:turn.example.com:3478",
        "TURN_USERNAME": "user",
        "TURN_CREDENTIAL": "pass",
        "STUN_SERVER_URL": "stun:stun.example.com:3478",
    })

    servers = config.as_dicts()

    assert config.has_turn_server
    assert servers[0] == {"urls": "stun:stun.example.com:3478"}
    assert servers[-1] == {
        "urls": "turn:turn.example.com:3478",
        "username": "user",
        "credential": "pass",
    }


def test_ice_servers_stun_list_deduplicated():
    """쉼표로 구분한 STUN 목록은 순서를 유지하고 공개 서버와 중복되지 않음"""
    config = ICEServerConfig.from_env({
        "STUN_SERVER_URL": "stun:a.example.com:3478, stun:stun.l.google.com:19302,,",
    })

    assert config.stun_urls == (
        "stun:a.example.com:3478",
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )


def test_ice_servers_incomplete_turn_ignored():
    config = ICEServerConfig.from_env({"TURN_SERVER_URL": "turn:turn.example.com", "TURN_USERNAME": "user"})

    assert not config.has_turn_server
    assert all("username" not in server for server in config.as_dicts())


def test_ice_servers_read_process_environment(monkeypatch):
    monkeypatch.setenv("STUN_SERVER_URL", "stun:env.example.com:3478")

    assert ICEServerConfig.from_env().stun_urls[0] == "stun:env.example.com:3478"


def test_cleanup_old_logs(tmp_path):
    old = datetime.now() - timedelta(days=90)
    recent = datetime.now() - timedelta(days=1)
    old_file = tmp_path / f"server_{old.strftime('%Y%m%d')}.log"
    recent_file = tmp_path / f"client_{recent.strftime('%Y%m%d')}.log"
    other_file = tmp_path / "notes_draft.log"
    for path in (old_file, recent_file, other_file):
        path.write_text("log")

    deleted = cleanup_old_logs(str(tmp_path), retention_days=60)

    assert deleted == 1
    assert not old_file.exists()
    assert recent_file.exists()
    assert other_file.exists()


def test_cleanup_missing_directory(tmp_path):
    assert cleanup_old_logs(os.path.join(tmp_path, "missing"), retention_days=1) == 0
