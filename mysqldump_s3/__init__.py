import logging
import os
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(level='INFO', log_file=None):
    """Configure application logging"""

    if isinstance(level, str):
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO
    else:
        log_level = level

    # Console handler (stderr, so dry-run output on stdout stays clean)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # boto is chatty at DEBUG
    logging.getLogger('botocore').setLevel(max(log_level, logging.INFO))
    logging.getLogger('s3transfer').setLevel(max(log_level, logging.INFO))

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
