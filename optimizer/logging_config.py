"""Logging configuration for the optimization engine."""

import logging
from typing import Optional

from optimizer.settings import settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI and embedding applications."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
