"""
Logging for Sidecar Bootstrap

Log lines go to stdout, which the auxiliary services inherit, so bootstrap
messages and child output stay interleaved in the order they happen.
"""
import logging
import sys
from typing import Optional

from config import Config

ROOT_LOGGER = "sidecar_bootstrap"
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def setup_logger(name: str = ROOT_LOGGER, level: Optional[int] = None) -> logging.Logger:
    """
    Configure a bootstrap logger once; later calls return it unchanged

    Args:
        name: Logger name, normally under ROOT_LOGGER
        level: Log level (default: DEBUG when Config.DEBUG, else INFO)
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Logger for a module: "src.core.artifacts" -> "sidecar_bootstrap.core.artifacts"."""
    parts = module_name.split(".")
    if parts[0] == "src":
        parts = parts[1:]
    return setup_logger(".".join([ROOT_LOGGER] + parts))
