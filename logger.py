import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "remux_planner"
DEFAULT_LOG_FILE = "logs/remux_planner.log"


def _build_handlers(log_file: str):
    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handlers = []
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = RotatingFileHandler(
            log_file, maxBytes=10*1024*1024, backupCount=5, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)
    return handlers


def setup_logger(name=LOGGER_NAME, log_file=DEFAULT_LOG_FILE, level=logging.INFO):
    """
    Sets up a logger with console and file handlers.
    """
    logger = logging.getLogger(name)

    # Prevent adding handlers multiple times
    if logger.hasHandlers():
        return logger

    logger.setLevel(level)
    for handler in _build_handlers(log_file):
        logger.addHandler(handler)

    return logger


def configure_logging(log_file: str = DEFAULT_LOG_FILE, level: str = "INFO", name: str = LOGGER_NAME):
    """
    Re-points the shared logger at the configured file and level.
    Modules keep their import-time reference; only the handlers change.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in _build_handlers(log_file):
        logger.addHandler(handler)

    return logger
