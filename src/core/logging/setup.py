"""
Logging setup.

Every process logs human-readable lines to stdout and, unless running
stdout-only (containers), JSON lines to a dated file:

    logs/<domain>/<YYYY-MM-DD>/<domain>_<stage>_<MMDD>_<HHMM>_<n>.log

Rotated files are moved under logs/archive/ with the same sub-path.
"""

import itertools
import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Lowered to WARNING: per-request chatter from the broker client and SQL engine
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
]

# next() on itertools.count is atomic under the GIL
_instance_ids = itertools.count()


def _get_next_instance_id() -> str:
    return str(next(_instance_ids))


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """TimedRotatingFileHandler whose rotated files end up in ``archive_dir``."""

    def __init__(self, filename, when="midnight", interval=1, backupCount=0,
                 encoding=None, delay=False, utc=False, archive_dir=None):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        base = Path(self.baseFilename)
        self.archive_dir = Path(archive_dir) if archive_dir else base.parent / "archive"
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()
        base = Path(self.baseFilename)
        for rotated in base.parent.glob(base.name + ".*"):
            try:
                shutil.move(str(rotated), str(self.archive_dir / rotated.name))
            except OSError as e:
                # Cannot log from inside the handler
                sys.stderr.write(f"Could not archive {rotated}: {e}\n")


def get_log_file_path(
    log_dir: Path,
    domain: str | None = None,
    stage: str | None = None,
    instance_id: str | None = None,
) -> Path:
    """
    Log file for this process.

    Examples:
        logs/eventstore/2025-03-19/eventstore_writer_0319_0800_0.log
        logs/2025-03-19/pipeline_0319_0800_1.log
    """
    now = datetime.now()
    prefix = "_".join(filter(None, (domain, stage))) or "pipeline"
    if instance_id is None:
        instance_id = _get_next_instance_id()
    filename = f"{prefix}_{now:%m%d_%H%M}_{instance_id}.log"

    folder = log_dir / domain if domain else log_dir
    return folder / f"{now:%Y-%m-%d}" / filename


def _file_handler(log_file: Path, log_dir: Path, json_format: bool, level: int,
                  when: str, interval: int, backup_count: int) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = ArchivingTimedRotatingFileHandler(
        log_file,
        when=when,
        interval=interval,
        backupCount=backup_count,
        encoding="utf-8",
        archive_dir=log_dir / "archive" / log_file.parent.relative_to(log_dir),
    )
    handler.setLevel(level)
    handler.setFormatter(
        JSONFormatter()
        if json_format
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s")
    )
    return handler


def setup_logging(
    name: str = "prediction_pipeline",
    stage: str | None = None,
    domain: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Replace the root logger's handlers and return the logger ``name``.

    Args:
        stage: Stage name (writer, feeder, replay); also set as log context
        domain: Log folder domain (eventstore, feeders, datamart)
        log_dir: Root of the log tree (default: ./logs)
        json_format: JSON lines in the file, plain text otherwise
        suppress_noisy: Lower NOISY_LOGGERS to WARNING
        worker_id: Set as log context
        log_to_stdout: Console only, at file_level; no file is created
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    set_log_context(stage=stage, worker_id=worker_id)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())
    console.setLevel(file_level if log_to_stdout else console_level)

    log_file = None
    if not log_to_stdout:
        log_file = get_log_file_path(log_dir, domain=domain, stage=stage)
        root.addHandler(
            _file_handler(
                log_file, log_dir, json_format, file_level, rotation_when, rotation_interval, backup_count
            )
        )
    root.addHandler(console)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug("Logging initialized: %s", log_file or "stdout only")
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_worker_startup(
    logger: logging.Logger,
    worker_name: str,
    bootstrap_servers: str | None = None,
    topics: list[str] | None = None,
    subscriptions: list[str] | None = None,
    extra_config: dict | None = None,
) -> None:
    """Log a startup banner: broker, topics, subscriptions and any extra settings."""
    rule = "=" * 70
    logger.info(rule)
    logger.info("Starting %s", worker_name)
    logger.info(rule)

    if bootstrap_servers:
        logger.info("Bootstrap servers: %s", bootstrap_servers)
    if topics:
        logger.info("Topics: %s", ", ".join(topics))
    if subscriptions:
        logger.info("Subscriptions: %s", ", ".join(subscriptions))
    for key, value in (extra_config or {}).items():
        logger.info("%s: %s", key, value)

    logger.info(rule)


def generate_cycle_id() -> str:
    """Cycle identifier, e.g. c-20250319-100000-3fa2."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
