import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.1.0'


def configure_logging(cfg):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = os.path.expanduser(cfg.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    if cfg.LOG_LEVEL:
        log_level = logging.getLevelName(cfg.LOG_LEVEL.upper())
        if not isinstance(log_level, int):
            raise ValueError(f"Invalid log level: {cfg.LOG_LEVEL}")
    else:
        log_level = logging.DEBUG if cfg.DEBUG else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'sshbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # paramiko logs every packet at DEBUG
    logging.getLogger('paramiko').setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")
