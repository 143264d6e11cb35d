import sys
from pathlib import Path
from typing import Optional

from loguru import logger

STDERR_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan> | "
    "{message}"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}"


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """
    Route loguru output to stderr and, when a directory is given, a rotating file.

    Trials may run on worker threads, so both sinks are enqueued.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=STDERR_FORMAT,
        level=log_level,
        colorize=True,
        enqueue=True,
    )

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "copysim.log",
            format=FILE_FORMAT,
            level=log_level,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            colorize=False,
            enqueue=True,
        )

    logger.debug(f"Logging initialized at {log_level} level (file sink: {log_dir or 'off'})")
