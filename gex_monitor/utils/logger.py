"""
Logging setup

Shared logger factory. The root handler is configured once from LOG_LEVEL.
"""

import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

VALID_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

_configured = False


def resolve_log_level(level_name: str = None) -> int:
    """Map a level name (or LOG_LEVEL from the environment) to a logging level"""
    if level_name is None:
        level_name = os.getenv('LOG_LEVEL', 'INFO')

    level_name = level_name.upper()
    if level_name in VALID_LEVELS:
        return VALID_LEVELS[level_name]

    logging.getLogger(__name__).warning(
        f"Invalid LOG_LEVEL '{level_name}', defaulting to INFO. "
        f"Valid options: {', '.join(VALID_LEVELS.keys())}"
    )
    return logging.INFO


def setup_logging(level_name: str = None):
    """Configure the root logger once; later calls only adjust the level"""
    global _configured

    level = resolve_log_level(level_name)

    if not _configured:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        _configured = True
    else:
        logging.getLogger().setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring logging on first use"""
    if not _configured:
        setup_logging()
    return logging.getLogger(name)
