import logging
import os
import sys
from typing import Iterable

from tqdm import tqdm

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

# httpx logs every request at INFO, which drowns the sync log during a publish
NOISY_LOGGERS = ('httpx', 'httpcore')


class TqdmLoggingHandler(logging.Handler):
    """Console handler that goes through tqdm.write so the CLI upload progress bar stays intact."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def _file_handler(log_file_path: str) -> logging.Handler:
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return logging.FileHandler(log_file_path, encoding='utf-8')


def setup_logger(
        log_level_str: str,
        log_file_path: str,
        log_to_console: bool,
        noisy_loggers: Iterable[str] = NOISY_LOGGERS
) -> logging.Logger:
    """
    Configure the ``locale_sync`` logger.

    Modules log through ``logging.getLogger(__name__)``, so handlers attached
    here receive the webhook, pipeline and loader messages alike.

    Args:
        log_level_str: Level name such as 'INFO' or 'DEBUG'. Unknown names mean INFO.
        log_file_path: Log file location; an empty value disables file logging.
        log_to_console: Whether to also log to stderr.
        noisy_loggers: Third-party loggers capped at WARNING.

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger("locale_sync")
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))
    logger.propagate = False

    # Reconfiguration (e.g. uvicorn reload) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = []
    if log_file_path:
        handlers.append(_file_handler(log_file_path))
    if log_to_console:
        handlers.append(TqdmLoggingHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
