# core/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

# threadName tells timer-driven passes ("catalog-sync") from manual triggers
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] [%(name)s] %(message)s"

STDOUT_HANDLER = "catalog-mirror-stdout"
FILE_HANDLER = "catalog-mirror-file"

# Per-request chatter from the HTTP stack drowns the per-pass summary
QUIET_LOGGERS = ("urllib3", "requests")

_configured = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _has_handler(root: logging.Logger, name: str) -> bool:
    return any(h.get_name() == name for h in root.handlers)


def _stdout_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(STDOUT_HANDLER)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
        backupCount=int(os.getenv("LOG_BACKUPS", "3")),
    )
    handler.set_name(FILE_HANDLER)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(force: bool = False) -> None:
    """
    Attach the mirror's stdout and rotating-file handlers to the root logger.
    Handlers are tagged by name, so repeated calls (or force=True after the
    environment changed) never stack duplicates.
    """
    global _configured
    if _configured and not force:
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    if force:
        for h in list(root.handlers):
            if h.get_name() in (STDOUT_HANDLER, FILE_HANDLER):
                root.removeHandler(h)
                h.close()

    if _env_flag("LOG_TO_STDOUT", "true") and not _has_handler(root, STDOUT_HANDLER):
        root.addHandler(_stdout_handler(level, formatter))

    if _env_flag("LOG_TO_FILE", "true") and not _has_handler(root, FILE_HANDLER):
        log_file = os.getenv("LOG_FILE", "/data/catalog_mirror.log")
        try:
            root.addHandler(_file_handler(log_file, level, formatter))
        except OSError as e:
            root.warning("Failed to initialize file logging at %s: %s", log_file, e)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
