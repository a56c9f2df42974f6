from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

LOG_DIR_ENV = "RESTIC_DISK_RESTORE_LOG_DIR"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DDTHH:mm:ss!UTC}Z</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <10}</cyan> | "
    "{message}"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DDTHH:mm:ss.SSS!UTC}Z | "
    "{level: <8} | "
    "{extra[source]: <10} | "
    "{extra[job_id]: <20} | "
    "{message}"
)


def _default_log_dir() -> Path | None:
    value = os.environ.get(LOG_DIR_ENV)
    return Path(value) if value else None


def setup_logging(
    *,
    debug: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and (optionally) file logging for a restore run.

    Logging Tiers:
    - CRITICAL/ERROR: Fatal restore failures, printed before exit
    - WARNING: Degraded but non-fatal outcomes (skipped size check,
      missing fallback loader, identifiers that could not be preserved)
    - SUCCESS/INFO: Stage progress and device changes
    - DEBUG: Command execution and parsed metadata

    Log Files (only when a log directory is configured):
    - operations.log: INFO+ events (7 day retention)
    - structured.jsonl: Structured JSON logs for later analysis

    Args:
        debug: Enable DEBUG level console logging
        log_dir: Directory for log files (defaults to $RESTIC_DISK_RESTORE_LOG_DIR)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    console_level = "DEBUG" if debug else "INFO"

    # Timestamps are UTC so operator transcripts line up with restic's output
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        colorize=None,
        format=CONSOLE_FORMAT,
    )

    log_dir = log_dir or _default_log_dir()
    if log_dir is None:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="DEBUG" if debug else "INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=debug,
        diagnose=False,
        format=FILE_FORMAT,
    )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
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
        job_id: Job identifier for tracking a restore run
        tags: Tags for filtering (e.g., ["restore", "storage"])
        source: Source component (e.g., "restore", "restic")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking a restore stage with automatic timing.

    Logs stage start, completion, and failure with duration tracking.

    Args:
        operation: Stage name (e.g., "metadata", "structure", "content")
        **details: Stage-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("structure", target="/dev/sdb") as log:
            log.debug("Applying GPT backup")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} stage started")

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} stage completed",
                duration_seconds=round(duration, 2),
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} stage failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for the domain.
    """

    @staticmethod
    def for_restore(job_id: str | None = None) -> Logger:
        """Logger for restore pipeline stages."""
        if job_id is None:
            job_id = f"restore-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="restore", tags=["restore"])

    @staticmethod
    def for_storage() -> Logger:
        """Logger for block device, filesystem and mount operations."""
        return logger.bind(source="storage", tags=["storage", "device"])

    @staticmethod
    def for_store() -> Logger:
        """Logger for the remote restic repository."""
        return logger.bind(source="restic", tags=["restic", "store"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, config)."""
        return logger.bind(source="system", tags=["system"])
