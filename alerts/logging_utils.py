from __future__ import annotations

import logging
import os
import time
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "queuekeeper"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
# The console is watched live, so the date and logger name are noise there.
CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(message)s"


def resolve_log_file() -> Path:
    override_dir = os.getenv("QUEUEKEEPER_LOG_DIR")
    if override_dir:
        return Path(override_dir) / "queuekeeper.log"

    programdata = os.getenv("ProgramData")
    if programdata:
        return Path(programdata) / "QueueKeeper" / "logs" / "queuekeeper.log"

    return Path(__file__).resolve().parent / "logs" / "queuekeeper.log"


def _build_file_handler(log_file: Path, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )



def configure_rotating_logger(
    logger_name: str,
    preferred_log_file: Path,
    fallback_log_file: Path,
    level: int = logging.INFO,
    max_bytes: int = 1_000_000,
    backup_count: int = 5,
) -> tuple[logging.Logger, Path]:
    """Attach a rotating file handler and a console handler to `logger_name`.

    Falls back to `fallback_log_file` when the preferred location (usually
    under ProgramData) cannot be created. Calling it again is a no-op.
    """
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        return logger, preferred_log_file
    logger.setLevel(level)

    log_file = preferred_log_file
    try:
        file_handler = _build_file_handler(log_file, max_bytes, backup_count)
    except OSError:
        log_file = fallback_log_file
        file_handler = _build_file_handler(log_file, max_bytes, backup_count)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, "%Y-%m-%d %H:%M:%S"))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, "%H:%M:%S"))

    for handler in (file_handler, console_handler):
        logger.addHandler(handler)
    # Child loggers (queuekeeper.feed, ...) reach these handlers; the root logger does not.
    logger.propagate = False
    return logger, log_file


def _print_tail(handle, lines: int) -> None:
    if lines == 0:
        handle.seek(0, os.SEEK_END)
        return
    for line in deque(handle, maxlen=lines):
        print(line, end="")


def _rotated(log_file: Path, position: int) -> bool:
    """True once the handler has rolled the file over underneath us."""
    try:
        return log_file.stat().st_size < position
    except OSError:
        return False


def tail_logs(
    log_file: Path,
    lines: int = 100,
    follow: bool = True,
    poll_interval: float = 0.5,
) -> int:
    """Print the last `lines` of the log, then keep printing new ones.

    Follows the live file across rotations by reopening it from the start.
    """
    if lines < 0:
        print("--tail-lines must be >= 0")
        return 2
    if not log_file.exists():
        print(f"Log file does not exist yet: {log_file}")
        return 1

    handle = log_file.open("r", encoding="utf-8", errors="replace")
    try:
        _print_tail(handle, lines)
        while follow:
            chunk = handle.readline()
            if chunk:
                print(chunk, end="", flush=True)
            elif _rotated(log_file, handle.tell()):
                handle.close()
                handle = log_file.open("r", encoding="utf-8", errors="replace")
            else:
                time.sleep(poll_interval)
    except KeyboardInterrupt:
        pass
    finally:
        handle.close()
    return 0
