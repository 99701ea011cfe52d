"""
Loguru logging for the identification pipeline.

Standard library loggers (the services, requests/urllib3, guessit's rebulk)
are routed through Loguru; output goes to stderr and to a rotating file under
the data directory.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

from subdrop.config import Settings, settings as default_settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Library loggers that flood DEBUG output during a drop
QUIET_LOGGERS = {
    "rebulk": logging.WARNING,
    "urllib3": logging.WARNING,
    "chardet": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forward standard library records to Loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def default_log_file(config: Settings) -> Path:
    return config.log_file or config.data_dir / "logs" / "subdrop.log"


def setup_logging(config: Settings | None = None, log_file: Path | None = None) -> Path:
    """Configure Loguru sinks and intercept standard library logging.

    Safe to call more than once; existing sinks are replaced.

    Args:
        config: Settings providing debug mode and log file rotation
            (the module settings when None)
        log_file: Override for the log file location

    Returns:
        Path of the log file in use
    """
    config = config or default_settings
    level = "DEBUG" if config.debug else "INFO"

    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(logging.DEBUG if config.debug else logging.INFO)
    for name in list(logging.root.manager.loggerDict):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
    for name, library_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(library_level)

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    log_file = log_file or default_log_file(config)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(log_file),
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="zip",
        level="DEBUG",
        format=FILE_FORMAT,
        enqueue=True,
        backtrace=True,
        diagnose=config.debug,
    )

    logger.info(f"Logging to {log_file} (console level {level})")
    return log_file
