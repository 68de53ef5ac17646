"""
Root logger configuration for relay processes.

One call to setup_logging() installs exactly two handlers on the root
logger: a console stream and a size-rotated file. Files are grouped by
domain and day so a long-running consumer and one-off producer runs can
share a log directory:

    logs/kafka/2025-01-15/kafka_consume_20250115_p12345.log
"""

import io
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.utilities import get_logger

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every fetch and heartbeat at DEBUG/INFO
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
    "asyncio",
]


def get_log_file_path(
    log_dir: Path,
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> Path:
    """
    Return the log file for this process.

    Layout: {log_dir}/[{domain}/]{YYYY-MM-DD}/{name}_{YYYYMMDD}[_{instance_id}].log
    where name joins domain and stage, or is "relay" when both are absent.
    """
    now = datetime.now()
    name_parts = [part for part in (domain, stage) if part] or ["relay"]
    name_parts.append(now.strftime("%Y%m%d"))
    if instance_id:
        name_parts.append(instance_id)

    folder = log_dir / domain if domain else log_dir
    return folder / now.strftime("%Y-%m-%d") / ("_".join(name_parts) + ".log")


def _file_handler(
    log_file: Path,
    json_format: bool,
    level: int,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT)
    )
    return handler


def _console_handler(level: int) -> logging.Handler:
    stream = sys.stdout
    if sys.platform == "win32":
        # cp1252 consoles cannot print arbitrary message payloads
        stream = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(ConsoleFormatter())
    return handler


def _replace_root_handlers(handlers: List[logging.Handler]) -> None:
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(logging.DEBUG)
    for handler in handlers:
        root.addHandler(handler)


def setup_logging(
    name: str = "kafka_relay",
    stage: Optional[str] = None,
    domain: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: Optional[str] = None,
    use_instance_id: bool = True,
) -> logging.Logger:
    """
    Install console and rotating file handlers on the root logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        name: Logger name returned to the caller
        stage: consume or produce; part of the file name and log context
        domain: Top-level folder under log_dir and log context domain
        log_dir: Base directory (default: ./logs)
        json_format: JSON lines in the file instead of plain text
        console_level: Minimum level printed to stdout
        file_level: Minimum level written to the file
        max_bytes: File size that triggers rotation
        backup_count: Rotated files kept
        suppress_noisy: Raise aiokafka/asyncio loggers to WARNING
        worker_id: Identifier added to every JSON record
        use_instance_id: Suffix the file name with the process id so
            consumers of one group can share a directory

    Returns:
        Logger called `name`
    """
    set_log_context(domain=domain, stage=stage, worker_id=worker_id)

    log_file = get_log_file_path(
        log_dir or DEFAULT_LOG_DIR,
        domain=domain,
        stage=stage,
        instance_id=f"p{os.getpid()}" if use_instance_id else None,
    )

    _replace_root_handlers(
        [
            _file_handler(log_file, json_format, file_level, max_bytes, backup_count),
            _console_handler(console_level),
        ]
    )

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = get_logger(name)
    logger.debug(f"Log file {log_file} (json={json_format})")
    return logger
