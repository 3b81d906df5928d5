"""
Logging configuration shared by the API service and the store layer
"""
import logging
import sys
from typing import Optional

from shared.config import LOG_LEVEL

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Setup logger writing to stdout with the service-wide format
    """
    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(resolved)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        # Avoid double output through the root logger (uvicorn configures it)
        logger.propagate = False

    return logger
