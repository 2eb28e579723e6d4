import logging
import os
from logging.handlers import RotatingFileHandler

# Default log level - can be overridden by environment variable or --verbose
LOG_LEVEL_STR = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Determine project root based on the location of logger.py
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
WORKSPACE_PATH = os.path.abspath(os.environ.get('MA_WORKSPACE_ROOT') or os.path.join(PROJECT_ROOT, 'workspace'))
DEFAULT_LOGS_DIR_NAME = 'logs'
LOGS_DIR = os.path.join(WORKSPACE_PATH, DEFAULT_LOGS_DIR_NAME)
LOG_FILENAME = 'archiver.log'

# Every module logger is a child of this one, so handlers only live here.
APP_LOGGER_NAME = 'manga_archiver'


def setup_logger(logger_name, log_file, level=logging.INFO, add_console_handler=True):
    """Generic function to set up a logger."""
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False

    # Ensure log directory exists
    log_dir = os.path.dirname(log_file)
    os.makedirs(log_dir, exist_ok=True)

    # Remove existing handlers to avoid duplication
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    if add_console_handler:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


def configure_app_logging(workspace_path: str = None, verbose: bool = False) -> logging.Logger:
    """
    (Re)configures the application logger to write into <workspace>/logs.

    Called by the CLI once the workspace is known. `verbose` forces DEBUG
    regardless of LOG_LEVEL.
    """
    logs_dir = os.path.join(workspace_path, DEFAULT_LOGS_DIR_NAME) if workspace_path else LOGS_DIR
    level = logging.DEBUG if verbose else LOG_LEVEL
    return setup_logger(APP_LOGGER_NAME, os.path.join(logs_dir, LOG_FILENAME), level)


def get_logger(name: str = APP_LOGGER_NAME) -> logging.Logger:
    """
    Returns a logger under the application namespace.
    Modules pass __name__, which already starts with 'manga_archiver'.
    """
    return logging.getLogger(name)


def get_log_file_path(app_logger: logging.Logger = None):
    """Returns the path of the active rotating log file, if any."""
    app_logger = app_logger or logging.getLogger(APP_LOGGER_NAME)
    for handler in app_logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler.baseFilename
    return None


# Setup main application logger
main_log_file = os.path.join(LOGS_DIR, LOG_FILENAME)
logger = setup_logger(APP_LOGGER_NAME, main_log_file, LOG_LEVEL)
