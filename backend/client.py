"""아바타 세션 CLI 클라이언트.

시그널링 서버에 접속해 아바타 미디어 엔진과 오디오 세션을 연결합니다.
연결 상태와 마이크 레벨을 출력하고, 원격 오디오는 재생하거나 파일로 저장합니다.

Usage:
    python client.py --url ws://localhost:8000/ws/rtc
    python client.py --device hw:1 --format alsa --no-echo-cancellation
    python client.py --record avatar.wav --retries 3

Note:
    Ctrl+C로 연결을 해제하고 종료합니다.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from avatar_session.logging_config import setup_logging
from avatar_session.webrtc import (
    AudioLevelMonitor,
    MediaCapture,
    ReconnectingSession,
    SessionCoordinator,
    SessionState,
    get_session_settings,
)

logger = logging.getLogger(__name__)


class RemoteAudioSink:
    """원격 오디오 트랙 출력 (파일 저장, 스피커 재생 또는 폐기)."""

    def __init__(self, record_path: Optional[str] = None, play: bool = False):
        self.record_path = record_path
        self.play = play
        self._recorder = None

    def _create_recorder(self):
        if self.record_path:
            return MediaRecorder(self.record_path), f"file:{self.record_path}"
        if self.play:
            for fmt in ("pulse", "alsa"):
                try:
                    return MediaRecorder("default", format=fmt), f"{fmt}:default"
                except (OSError, ValueError) as e:
                    logger.warning(f"[Client] {fmt} 출력 열기 실패: {e}")
        return MediaBlackhole(), "blackhole"

    async def start(self, track) -> None:
        await self.stop()
        recorder, sink = self._create_recorder()
        recorder.addTrack(track)
        await recorder.start()
        self._recorder = recorder
        logger.info(f"[Client] 원격 오디오 출력 시작 (sink={sink})")

    async def stop(self) -> None:
        recorder, self._recorder = self._recorder, None
        if recorder is not None:
            await recorder.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talking avatar audio session client")
    parser.add_argument("--url", help="Signaling WebSocket URL (default: SIGNALING_URL)")
    parser.add_argument("--device", help="Audio input device (default: AUDIO_DEVICE or OS default)")
    parser.add_argument("--format", help="ffmpeg input format: pulse, alsa, avfoundation, dshow")
    parser.add_argument("--no-echo-cancellation", action="store_true", help="Disable echo cancellation")
    parser.add_argument("--no-noise-suppression", action="store_true", help="Disable noise suppression")
    parser.add_argument("--no-auto-gain-control", action="store_true", help="Disable automatic gain control")
    parser.add_argument("--record", metavar="PATH", help="Record the avatar audio to a file")
    parser.add_argument("--play", action="store_true", help="Play the avatar audio on the default output")
    parser.add_argument("--retries", type=int, default=0, help="Reconnect attempts with backoff (0 = off)")
    parser.add_argument("--log-level", help="Log level (default: LOG_LEVEL)")
    return parser


def should_stop(state: SessionState, reconnect_task: Optional[asyncio.Task]) -> bool:
    """연결 종료 상태에서 진행 중인 재연결이 없으면 클라이언트를 종료합니다.

    재연결 태스크가 이미 끝난 뒤(성공 후 연결 끊김 포함)의 Failed/Disconnected도 종료로 봅니다.
    """
    if state not in (SessionState.FAILED, SessionState.DISCONNECTED):
        return False
    return reconnect_task is None or reconnect_task.done()


def build_settings(args: argparse.Namespace):
    """CLI 인자로 환경 변수 설정을 덮어쓴 SessionSettings를 반환합니다."""
    settings = get_session_settings()
    update = {}
    if args.url:
        update["SIGNALING_URL"] = args.url
    if args.device:
        update["AUDIO_DEVICE"] = args.device
    if args.format:
        update["AUDIO_FORMAT"] = args.format
    if args.no_echo_cancellation:
        update["ECHO_CANCELLATION"] = False
    if args.no_noise_suppression:
        update["NOISE_SUPPRESSION"] = False
    if args.no_auto_gain_control:
        update["AUTO_GAIN_CONTROL"] = False
    if not update:
        return settings
    return type(settings)(**{**settings.model_dump(), **update})


async def run_client(args: argparse.Namespace) -> int:
    settings = build_settings(args)
    coordinator = SessionCoordinator(
        settings=settings,
        media_capture=MediaCapture(device=settings.AUDIO_DEVICE, format=settings.AUDIO_FORMAT),
    )
    monitor = AudioLevelMonitor()
    sink = RemoteAudioSink(record_path=args.record, play=args.play)
    reconnect: Optional[ReconnectingSession] = None
    reconnect_task: Optional[asyncio.Task] = None
    stop_event = asyncio.Event()
    was_connected = False

    @coordinator.on("statechange")
    def on_state(state: SessionState):
        nonlocal was_connected
        print(f"\n[state] {state.value}")
        if state == SessionState.CONNECTED:
            was_connected = True
        elif should_stop(state, reconnect_task):
            stop_event.set()

    @coordinator.on("errorchange")
    def on_error(message: Optional[str]):
        if message:
            print(f"[error] {message}")

    @coordinator.on("track")
    async def on_track(track):
        await sink.start(track)

    @coordinator.on("localstream")
    async def on_local_stream(handle):
        if handle is not None:
            monitor.start(handle)
        else:
            await monitor.stop()

    ticks = 0

    def on_level(level: int):
        nonlocal ticks
        ticks += 1
        if ticks % 25 == 0:
            bar = "#" * (level // 5)
            print(f"\r[mic] {level:3d} {bar:<20}", end="", flush=True)

    monitor.on_level(on_level)

    loop = asyncio.get_running_loop()
    sigint_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        sigint_installed = True
    except NotImplementedError:
        # Windows: KeyboardInterrupt로 종료
        pass

    try:
        if args.retries > 0:
            reconnect = ReconnectingSession(coordinator, max_attempts=args.retries)
            reconnect_task = reconnect.start()

            def on_reconnect_done(t: asyncio.Task):
                if not t.cancelled() and (t.exception() is not None or not t.result()):
                    stop_event.set()

            reconnect_task.add_done_callback(on_reconnect_done)
        else:
            await coordinator.connect()
        await stop_event.wait()
    finally:
        if reconnect is not None:
            await reconnect.cancel()
        await coordinator.disconnect()
        await monitor.stop()
        await sink.stop()
        if sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)

    return 0 if was_connected else 1


def main() -> None:
    args = build_parser().parse_args()
    setup_logging(level=args.log_level, prefix="client")
    try:
        sys.exit(asyncio.run(run_client(args)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
