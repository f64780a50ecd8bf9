"""
Logger Utility for livechat-relay
Provides a centralized logger setup for the relay process.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
LOG_DIR = os.path.join(PROJECT_ROOT, 'logs')


def setup_logging(config=None, log_dir=None):
    """
    Configures the root logger for the process.
    This function is idempotent and safe to call multiple times.
    It reads `logging_enabled` from the config to decide whether to enable logging.
    """
    root_logger = logging.getLogger()

    # Another part of the process (e.g. uvicorn or pytest) already did it.
    if root_logger.hasHandlers():
        return

    if config is None:
        from livechat_relay.common.config import load_config
        config = load_config()
    logging_enabled = config.get('logging_enabled')
    if logging_enabled is None:
        logging_enabled = os.environ.get('LOGGING_ENABLED', 'false').lower() == 'true'

    # Disabled: nothing gets through. Enabled: root passes DEBUG and handlers filter.
    log_level = logging.DEBUG if logging_enabled else logging.CRITICAL + 1
    root_logger.setLevel(log_level)

    if not logging_enabled:
        root_logger.addHandler(logging.NullHandler())
        return

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(name)s] (%(processName)s:%(process)d) - %(message)s'
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.INFO)
    root_logger.addHandler(stream_handler)

    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_file_path = os.path.join(log_dir, 'livechat_relay.log')

    # Rotates logs after 5MB, keeping 3 backup files.
    file_handler = RotatingFileHandler(log_file_path, maxBytes=5 * 1024 * 1024, backupCount=3)
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)

    root_logger.info(f"Logging configured for process {os.getpid()}. Log file: {log_file_path}")


def get_logger(name: str) -> logging.Logger:
    """
    Retrieves a logger instance. It will inherit the root configuration.
    """
    return logging.getLogger(name)
