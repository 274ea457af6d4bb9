# deck/utils/logging.py
"""
Logging configuration for Deck.

Console output goes to stderr so command output on stdout stays clean; the
rotating file under ``~/.config/deck/logs`` keeps INFO and above from every
run, and a JSON copy of it is kept for tooling.
"""
import sys
from pathlib import Path

from loguru import logger

from deck.constants import APP_NAME, LOG_DIR, LOG_FORMAT, LOG_ROTATION, LOG_RETENTION


def setup_logging(debug: bool = False, log_dir: Path = LOG_DIR) -> None:
    """
    Configure the application logging.

    Args:
        debug: Log DEBUG to the console and include variables in tracebacks
        log_dir: Directory for the rotating log files
    """
    logger.remove()
    logger.configure(extra={"name": APP_NAME})
    logger.add(sys.stderr, format=LOG_FORMAT, level="DEBUG" if debug else "WARNING", diagnose=debug)

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"File logging disabled, cannot create {log_dir}: {e}")
        return

    rotating = dict(level="INFO", rotation=LOG_ROTATION, retention=LOG_RETENTION, compression="zip")
    logger.add(log_dir / f"{APP_NAME}.log", format=LOG_FORMAT, **rotating)
    logger.add(log_dir / f"{APP_NAME}.jsonl", serialize=True, **rotating)
    logger.debug(f"Logging to {log_dir}")


def get_logger(name: str = APP_NAME):
    """Return the loguru logger bound to ``name`` (shown in every record)."""
    return logger.bind(name=name)
