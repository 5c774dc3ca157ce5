import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FILE_NAME = "produce_ledger.log"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _configure_logging() -> logging.Logger:
    """Configure package-wide logging with a console handler.

    The file handler is attached later, once the configuration has told us
    where the log directory lives.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(_FORMATTER)
    logger.addHandler(console_handler)

    return logger


def detach_file_handler() -> None:
    """Close and remove any file handler added by :func:`attach_file_handler`."""

    for handler in list(log.handlers):
        if isinstance(handler, RotatingFileHandler):
            log.removeHandler(handler)
            handler.close()


def attach_file_handler(log_dir: Path) -> Optional[Path]:
    """Send package logs to a rotating file inside ``log_dir``.

    Calling it again replaces the previous file handler, so a process that
    opens several configurations logs to the most recent one only.

    Returns:
        Path | None: The log file in use, or ``None`` when the directory
        cannot be created or opened. The failure is logged to the console.
    """

    detach_file_handler()
    log_file = Path(log_dir) / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        log.warning("Unable to initialize log file at '%s': %s", log_file, exc)
        return None

    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(_FORMATTER)
    log.addHandler(file_handler)
    log.debug("Logging to '%s'", log_file)
    return log_file


log = _configure_logging()
log.info("Logger initialized for the 'produce_ledger' package.")
