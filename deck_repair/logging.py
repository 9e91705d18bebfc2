from __future__ import annotations

import os
import shlex
import sys
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(os.environ.get("DECK_REPAIR_LOG_DIR", "/run/deck-repair/logs"))


@dataclass
class _FileSink:
    path: Path
    options: dict
    handler_id: int | None = None


_file_sinks: list[_FileSink] = []


def _add_file_sink(path: Path, **options) -> None:
    sink = _FileSink(path=path, options=options)
    sink.handler_id = logger.add(path, **options)
    _file_sinks.append(sink)


def active_file_sinks() -> list[Path]:
    """Paths of the file sinks currently attached to the logger."""
    return [sink.path for sink in _file_sinks if sink.handler_id is not None]


def _same_filesystem(path: Path, device: int) -> bool:
    try:
        return os.stat(path).st_dev == device
    except OSError:
        # Unknown location: treat as at risk
        return True


def pause_file_sinks(mountpoint: str) -> list[Path]:
    """
    Detach the file sinks whose directory lives on ``mountpoint``.

    Must be called before the filesystem is frozen: removing an enqueued
    sink drains its queue, which needs the filesystem writable.

    Returns:
        Paths of the sinks that were detached
    """
    try:
        device = os.stat(mountpoint).st_dev
    except OSError:
        return []
    paused = []
    for sink in _file_sinks:
        if sink.handler_id is None or not _same_filesystem(sink.path.parent, device):
            continue
        logger.remove(sink.handler_id)
        sink.handler_id = None
        paused.append(sink.path)
    return paused


def resume_file_sinks() -> list[Path]:
    """Reattach every sink detached by pause_file_sinks."""
    resumed = []
    for sink in _file_sinks:
        if sink.handler_id is None:
            sink.handler_id = logger.add(sink.path, **sink.options)
            resumed.append(sink.path)
    return resumed


def _should_log_progress(record) -> bool:
    """Filter raw dd progress lines - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "progress" in tags and record["level"].no < logger.level("INFO").no:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_progress(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and file sinks for a repair run.

    Logging Tiers:
    - CRITICAL/ERROR: Verification failures, tool failures, halts
    - SUCCESS/INFO: Stage transitions (partitioning, formatting, imaging)
    - DEBUG: Every external command with its arguments
    - TRACE: dd progress lines

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    A write to a frozen filesystem blocks until it is thawed, and a blocked
    enqueued sink eventually blocks every log call. File sinks on the
    installer root are therefore detached for the length of the freeze
    (see pause_file_sinks), and the default directory is on tmpfs.

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to /run/deck-repair/logs)
    """
    logger.remove()
    _file_sinks.clear()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "repair"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    _add_file_sink(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a run
        tags: Tags for filtering (e.g., ["imaging", "storage"])
        source: Source component (e.g., "imaging", "boot")
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


def format_command(command: Sequence[str]) -> str:
    """Render a command the way a shell would need it quoted."""
    return " ".join(shlex.quote(str(part)) for part in command)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking a repair stage with automatic timing.

    Logs stage start, completion, and failure with duration.

    Example:
        with operation_context("imaging", source="/dev/sda3") as log:
            log.debug("Freezing rootfs")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition table application and verification."""
        return get_logger(source="partition", tags=["partition", "storage"])

    @staticmethod
    def for_format() -> Logger:
        """Logger for filesystem creation."""
        return get_logger(source="format", tags=["format", "storage"])

    @staticmethod
    def for_imaging(job_id: str | None = None) -> Logger:
        """Logger for slot imaging (freeze, dd, btrfstune, btrfs check)."""
        if job_id is None:
            job_id = f"imaging-{uuid.uuid4().hex[:8]}"
        return get_logger(job_id=job_id, source="imaging", tags=["imaging", "storage"])

    @staticmethod
    def for_boot() -> Logger:
        """Logger for boot configuration inside slot chroots."""
        return get_logger(source="boot", tags=["boot"])

    @staticmethod
    def for_command() -> Logger:
        """Logger for external tool invocations."""
        return get_logger(source="command", tags=["command"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for session flow (prompts, halt, reboot)."""
        return get_logger(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Used for dd progress lines, which arrive several times per second.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def info(self, key: str, message: str, **kwargs) -> None:
        self._throttled_log("INFO", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
