"""
Centralized logging setup for the matching engine.

Modules get their logger with ``logging.getLogger(__name__)``; the host
application calls ``setup_logging()`` once at startup.
"""

import logging
import sys
from typing import Optional

from fundmatch.core.config import settings


_logging_configured = False


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    force: bool = False
) -> None:
    """
    Configure the root logger with a single console handler.

    Args:
        log_level: Logging level name. Defaults to settings.LOG_LEVEL.
        log_format: Log record format. Defaults to settings.LOG_FORMAT.
        force: Reconfigure even if logging was already set up.
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    level_name = (log_level or settings.LOG_LEVEL).upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove handlers from a previous configuration
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format or settings.LOG_FORMAT))
    root_logger.addHandler(handler)

    # The Anthropic SDK and httpx log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    _logging_configured = True
    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")
