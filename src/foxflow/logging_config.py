# ABOUTME: Logging configuration setup for foxflow migrations
# ABOUTME: Configures console logging, a rotated migration log file and library log levels
import logging
import logging.handlers
import sys
from pathlib import Path

from foxflow.exceptions import ConfigurationError

# HTTP fetches and RDF parsing log at INFO for every datastream
NOISY_LIBRARIES = ("urllib3", "rdflib")


def _level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ConfigurationError(
            f"Unknown log level: {log_level}",
            recovery_hint="Use DEBUG, INFO, WARNING, ERROR or CRITICAL",
        )
    return level


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_dir: str | Path | None = None,
) -> Path | None:
    """
    Set up logging for a migration run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Log file name (if None, logs to stderr only)
        log_dir: Directory for the log file (if None, the current directory)

    Returns:
        Path of the log file, if one was requested

    Raises:
        ConfigurationError: If log_level is not a logging level name
    """
    level = _level(log_level)
    logger = logging.getLogger("foxflow")
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    # Library records only show up when debugging foxflow itself
    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    file_path = None
    if log_file:
        log_path = Path(log_dir).expanduser() if log_dir else Path.cwd()
        log_path.mkdir(parents=True, exist_ok=True)
        file_path = log_path / log_file

        # A full repository migration logs one line per object; rotate at 10MB
        file_handler = logging.handlers.RotatingFileHandler(
            file_path, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception

    logger.debug(f"Logging initialized at {log_level} level")
    return file_path
