"""File loggers shared by the chat components."""

import logging
import os


def build_logger(component: str, log_dir: str, filename: str = "chat.log") -> logging.Logger:
    """Return the component logger, attaching a file handler under `log_dir` once."""
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(f"erp_chat.{component}")
    logger.setLevel(logging.INFO)

    log_path = os.path.abspath(os.path.join(log_dir, filename))
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
            return logger

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
