from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "ISODROID_LOG_DIR",
        Path.home() / ".local" / "state" / "isodroid" / "logs",
    )
)

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <7}</cyan> | "
    "{message}"
)


def _file_format(with_tags: bool) -> str:
    fields = ["{time:YYYY-MM-DD HH:mm:ss.SSS}", "{level: <8}", "{extra[source]: <7}", "{extra[job_id]: <15}"]
    if with_tags:
        fields.append("{extra[tags]}")
    fields.append("{message}")
    return " | ".join(fields)


def _should_log_probe(record) -> bool:
    """Hide the privilege probe below WARNING unless TRACE is on."""
    if record["level"].no >= logger.level("WARNING").no:
        return True
    if "probe" in record["extra"].get("tags", []):
        return record["level"].no <= logger.level("TRACE").no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Route log records to the console and the log directory.

    Log Files:
    - operations.log: gadget transitions, mounts, ejects, charging (INFO+)
    - debug.log: every privileged command, only with --debug or --trace

    Args:
        debug: Show DEBUG records and write debug.log
        trace: Also show TRACE records, including privilege probes
        log_dir: Where the log files go (defaults to DEFAULT_LOG_DIR)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "app"})

    level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=level,
        filter=_should_log_probe,
        colorize=True,
        backtrace=False,
        diagnose=False,
        format=_CONSOLE_FORMAT,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=_file_format(with_tags=False),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level=level,
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=_file_format(with_tags=True),
        )

    return logger


@contextmanager
def operation_context(operation: str, **details):
    """
    Log the start, outcome and duration of one gadget operation.

    Yields a logger bound to a fresh job id ("enable-1a2b3c4d"); an
    exception is logged with its type and re-raised.

    Example:
        with operation_context("create", image="/sdcard/disk.img") as log:
            log.debug("Truncating image")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    label = operation.capitalize()
    log = logger.bind(source=operation, job_id=job_id, tags=[operation])
    started = time.monotonic()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log.info(f"{label} started", **details)
        try:
            yield log
        except Exception as e:
            log.error(
                f"{label} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{label} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """
    Bound loggers for each component, tagged for filtering.
    """

    @staticmethod
    def _component(source: str, *tags: str, job_id: str | None = None) -> Logger:
        extra: dict[str, object] = {"source": source, "tags": [source, *tags]}
        if job_id is not None:
            extra["job_id"] = job_id
        return logger.bind(**extra)

    @staticmethod
    def for_executor() -> Logger:
        """Privileged command execution."""
        return LoggerFactory._component("root", "exec")

    @staticmethod
    def for_gadget() -> Logger:
        """Gadget enable/disable and the gadget lock."""
        return LoggerFactory._component("gadget", "usb")

    @staticmethod
    def for_lun(job_id: str | None = None) -> Logger:
        """LUN mounts, ejects and disk images; one job id per call."""
        return LoggerFactory._component(
            "lun", "usb", job_id=job_id or f"lun-{uuid.uuid4().hex[:8]}"
        )

    @staticmethod
    def for_power() -> Logger:
        return LoggerFactory._component("power")

    @staticmethod
    def for_catalog() -> Logger:
        return LoggerFactory._component("catalog", "storage")

    @staticmethod
    def for_system() -> Logger:
        """Startup, shutdown and the command line."""
        return LoggerFactory._component("system")
