"""
Logging helpers.

limbflat is a library: every module logs under the ``limbflat`` logger and
nothing is configured on import (the package logger only carries a
NullHandler). Host applications (report generators, batch jobs) either
configure logging themselves or call `setup_logging()` to attach one handler
to the ``limbflat`` logger. The root logger is never touched.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Optional, TextIO

PACKAGE_LOGGER = "limbflat"
ENV_LOG_LEVEL = "LIMBFLAT_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# marks handlers added by setup_logging so they can be found again
_HANDLER_TAG = "_limbflat_handler"

_LOG_ONCE_KEYS: set[str] = set()
_LOG_ONCE_LOCK = threading.Lock()


def package_logger() -> logging.Logger:
    return logging.getLogger(PACKAGE_LOGGER)


def _parse_log_level(level: str | int) -> int:
    if isinstance(level, int):
        return int(level)
    value = str(level).strip().upper()
    if not value:
        return logging.INFO
    parsed = getattr(logging, value, logging.INFO)
    return int(parsed) if isinstance(parsed, int) else logging.INFO


def _installed_handler(logger: logging.Logger) -> Optional[logging.Handler]:
    for handler in logger.handlers:
        if getattr(handler, _HANDLER_TAG, False):
            return handler
    return None


def setup_logging(
    *,
    log_level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    stream: Optional[TextIO] = None,
) -> Optional[Path]:
    """
    ``limbflat`` 로거에 핸들러 하나를 붙입니다.

    Args:
        log_level: 로그 레벨 (LIMBFLAT_LOG_LEVEL 환경 변수가 우선)
        log_file: UTF-8 로그 파일 경로. None이면 stream(기본 stderr)으로 출력
        stream: log_file이 없을 때 사용할 스트림

    Returns:
        로그 파일 경로 (스트림 출력이거나 파일을 열 수 없으면 None)

    Idempotent: a handler added by an earlier call is kept and its file path
    (if any) is returned.
    """
    logger = package_logger()

    existing = _installed_handler(logger)
    if existing is not None:
        filename = getattr(existing, "baseFilename", None)
        return Path(filename) if filename else None

    level = _parse_log_level(os.environ.get(ENV_LOG_LEVEL) or log_level)

    log_path: Optional[Path] = None
    handler: logging.Handler
    if log_file is not None:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(str(log_path), encoding="utf-8")
        except OSError:
            return None
    else:
        handler = logging.StreamHandler(stream)

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    setattr(handler, _HANDLER_TAG, True)
    logger.addHandler(handler)
    logger.setLevel(level)

    logger.info(
        "Logging initialized: %s (level=%s)",
        log_path if log_path is not None else "stream",
        logging.getLevelName(level),
    )
    return log_path


def teardown_logging() -> None:
    """setup_logging이 붙인 핸들러를 제거하고 닫습니다."""
    logger = package_logger()
    handler = _installed_handler(logger)
    while handler is not None:
        logger.removeHandler(handler)
        handler.close()
        handler = _installed_handler(logger)
    logger.setLevel(logging.NOTSET)


def log_once(
    logger: logging.Logger,
    key: str,
    level: int,
    msg: str,
    *args,
    exc_info: bool | BaseException | None = None,
) -> bool:
    """
    Logs at most once per process for the given key.

    Returns True when the message was emitted.
    """
    k = str(key)
    with _LOG_ONCE_LOCK:
        if k in _LOG_ONCE_KEYS:
            return False
        _LOG_ONCE_KEYS.add(k)

    logger.log(level, msg, *args, exc_info=exc_info)
    return True


def reset_log_once() -> None:
    """Forget all `log_once` keys (used by tests)."""
    with _LOG_ONCE_LOCK:
        _LOG_ONCE_KEYS.clear()
