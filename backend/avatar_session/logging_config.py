"""
===========================================
로깅 설정 모듈
===========================================

중계 서버와 CLI 클라이언트가 공통으로 사용하는 로깅 설정.
- 콘솔 + 일자별 파일 (logs/<prefix>_YYYYMMDD.log)
- aioice/aiortc 등 외부 라이브러리 로그 억제
- 보관 기간이 지난 로그 파일 정리

사용 예시:
    from avatar_session.logging_config import setup_logging

    setup_logging(prefix="client")
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from .webrtc.config import get_session_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ICE 체크/RTP 패킷 단위 로그가 많은 라이브러리
QUIET_LOGGERS = ("aioice", "aiortc", "websockets", "uvicorn.access")


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = "logs",
    prefix: str = "server",
) -> Optional[str]:
    """
    로깅 설정 초기화

    Args:
        level: 로그 레벨 (기본: settings.LOG_LEVEL)
        log_dir: 로그 디렉토리 (None이면 파일 출력 안 함)
        prefix: 로그 파일 이름 접두사 ("server", "client")

    Returns:
        Optional[str]: 로그 파일 경로

    Note:
        프로세스 시작 시 한 번만 호출합니다. 기존 루트 핸들러는 제거됩니다.
    """
    level_name = (level or get_session_settings().LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_make_handler(logging.StreamHandler(sys.stdout), log_level))

    log_file = None
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = str(directory / f"{prefix}_{datetime.now():%Y%m%d}.log")
        root_logger.addHandler(_make_handler(logging.FileHandler(log_file, encoding="utf-8"), log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"로깅 설정 완료: level={level_name}, file={log_file or 'None'}")
    return log_file


def cleanup_old_logs(log_dir: str = "logs", retention_days: Optional[int] = None) -> int:
    """보관 기간이 지난 <prefix>_YYYYMMDD.log 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일, 기본: settings.LOG_RETENTION_DAYS)

    Returns:
        삭제된 파일 수
    """
    if retention_days is None:
        retention_days = get_session_settings().LOG_RETENTION_DAYS

    directory = Path(log_dir)
    if not directory.is_dir():
        return 0

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = 0

    for path in directory.glob("*_*.log"):
        try:
            stamp = datetime.strptime(path.stem.rsplit("_", 1)[1], "%Y%m%d")
        except ValueError:
            # 날짜 접미사가 없는 파일은 건드리지 않음
            continue
        if stamp < cutoff:
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                logging.getLogger(__name__).warning(f"로그 파일 삭제 실패: {path} ({e})")

    return deleted
