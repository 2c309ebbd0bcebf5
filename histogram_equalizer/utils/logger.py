import logging
import sys
from histogram_equalizer.config import settings # Use absolute import

# Map string level names to logging constants
LOG_LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

# Get the desired level from settings, default to INFO if invalid or not found
log_level_str = getattr(settings, 'LOGGING_LEVEL', 'INFO').upper()
log_level = LOG_LEVEL_MAP.get(log_level_str, logging.INFO)

log_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Console Handler
console_handler = logging.StreamHandler(sys.stdout) # Use stdout for console output
console_handler.setFormatter(log_formatter)


def get_logger(name):
    """
    Gets a logger instance configured with the application's settings.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Prevent adding handlers multiple times if get_logger is called repeatedly for the same name
    if not logger.handlers:
        logger.addHandler(console_handler)

    logger.propagate = False

    return logger


def set_log_level(level_name):
    """Changes the level of every logger created through get_logger (e.g. from --verbose)."""
    global log_level
    log_level = LOG_LEVEL_MAP.get(str(level_name).upper(), logging.INFO)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith('histogram_equalizer'):
            logger.setLevel(log_level)
