"""
Production Logging

Colored console output and size-rotated log files for the bridge.
"""

import logging
import sys
from typing import Optional
from pathlib import Path
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = 'modular_midi'

CONSOLE_FORMAT = '%(asctime)s %(levelname)-8s %(threadName)s: %(message)s'
FILE_FORMAT = '%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s'


class Color:
    """ANSI color codes"""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    GRAY = '\033[38;5;244m'
    WHITE = '\033[38;5;255m'
    TURQUOISE = '\033[38;5;44m'
    YELLOW = '\033[38;5;214m'
    RED = '\033[38;5;196m'


class ProductionFormatter(logging.Formatter):
    """Formatter that colors whole lines by level when writing to a terminal"""

    LEVEL_COLORS = {
        logging.DEBUG: Color.GRAY,
        logging.INFO: Color.WHITE,
        logging.WARNING: Color.YELLOW,
        logging.ERROR: Color.RED,
        logging.CRITICAL: Color.RED + Color.BOLD,
    }

    def __init__(self, fmt: str = CONSOLE_FORMAT, include_colors: bool = True,
                 stream=None):
        super().__init__(fmt, datefmt='%H:%M:%S')
        stream = stream or sys.stdout
        self.include_colors = include_colors and hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record):
        formatted = super().format(record)

        if self.include_colors:
            color = self.LEVEL_COLORS.get(record.levelno, Color.WHITE)
            formatted = f"{color}{formatted}{Color.RESET}"

        return formatted


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None,
                  max_file_size: int = 50 * 1024 * 1024,  # 50MB
                  backup_count: int = 10) -> logging.Logger:
    """
    Configure the package logger

    Args:
        verbose: DEBUG level instead of INFO
        log_file: Optional rotating log file
        max_file_size: Bytes before the file is rotated
        backup_count: Rotated files kept

    Returns:
        The configured 'modular_midi' logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reconfiguring replaces earlier handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ProductionFormatter(include_colors=True, stream=sys.stdout))
    logger.addHandler(console)

    if log_file:
        try:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(ProductionFormatter(FILE_FORMAT, include_colors=False))
            logger.addHandler(file_handler)

        except OSError as e:
            logger.warning(f"Failed to setup file logging: {e}")

    return logger
