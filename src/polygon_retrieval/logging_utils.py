"""
Logging setup for the Polygon retrieval package.

Every module logs through logging.getLogger(__name__); this module only
configures the package logger's handlers. Configuration comes from the
environment unless setup_logging() is called explicitly:

- POLYGON_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default INFO)
- POLYGON_LOG_FILE: optional file to log to in addition to stdout
- POLYGON_DEBUG: 'true', '1' or 'yes' forces DEBUG

Log Format:
    %(asctime)s - %(name)s - %(levelname)s - %(message)s

Messages pass through MaskingFilter so API keys never reach a handler.
"""

import logging
import os
import sys
from typing import Optional

from .config import SensitiveDataMasker

PACKAGE_LOGGER = __name__.rsplit('.', 1)[0]
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_LOG_LEVEL = os.getenv('POLYGON_LOG_LEVEL', 'INFO').upper()
_LOG_FILE = os.getenv('POLYGON_LOG_FILE', None)
_DEBUG_MODE = os.getenv('POLYGON_DEBUG', '').lower() in ('true', '1', 'yes')

_root_configured = False


class MaskingFilter(logging.Filter):
    """Masks API keys and bearer tokens in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = SensitiveDataMasker.mask_message(record.getMessage())
        record.args = ()
        return True


def _configure_root_logger() -> logging.Logger:
    """Attach handlers to the package logger once."""
    global _root_configured

    root = logging.getLogger(PACKAGE_LOGGER)
    if _root_configured:
        return root

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if _DEBUG_MODE else getattr(logging, _LOG_LEVEL, logging.INFO)
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    masking = MaskingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(masking)
    root.addHandler(console_handler)

    if _LOG_FILE:
        try:
            os.makedirs(os.path.dirname(_LOG_FILE) or '.', exist_ok=True)
            file_handler = logging.FileHandler(_LOG_FILE)
        except OSError as e:
            root.warning(f'Failed to create log file {_LOG_FILE}: {e}')
        else:
            file_handler.setFormatter(formatter)
            file_handler.addFilter(masking)
            root.addHandler(file_handler)

    _root_configured = True
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger under the package hierarchy, configuring handlers on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info('Backfill started')
    """
    _configure_root_logger()
    return logging.getLogger(name or PACKAGE_LOGGER)


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    debug: bool = False,
) -> logging.Logger:
    """
    Reconfigure package logging; call once at application startup.

    Example:
        >>> setup_logging(level='DEBUG', log_file='logs/polygon.log')
    """
    global _root_configured, _LOG_LEVEL, _LOG_FILE, _DEBUG_MODE

    _root_configured = False
    _LOG_LEVEL = level.upper()
    _LOG_FILE = log_file
    _DEBUG_MODE = debug

    return _configure_root_logger()
