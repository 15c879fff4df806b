"""Centralized logging with rotation suitable for audit trails."""
import logging
import os
from logging.handlers import RotatingFileHandler


def init_logging(app) -> logging.Logger:
    level_name = (app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    handlers: list[logging.Handler] = []
    log_path = None
    if app.config.get("LOG_TO_FILE", True):
        log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, "grievances.log")
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    logger = logging.getLogger(app.name)
    logger.setLevel(level)
    # create_app may run more than once per process (tests, CLI); replace rather than stack handlers.
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    # Flask's built-in logger
    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)

    logger.info("Logging initialized", extra={"path": log_path})
    return logger
