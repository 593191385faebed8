"""Logging configuration for the orchestrator."""
import logging
import sys
from app.config import settings


def _resolve_level() -> int:
    """Pick the log level from settings, defaulting by environment."""
    if settings.log_level:
        # getLevelName returns "Level X" for names it does not know
        level = logging.getLevelName(settings.log_level.upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if settings.environment == "development" else logging.INFO


# Configure the orchestrator logger
logger = logging.getLogger("orchestrator")
logger.setLevel(_resolve_level())

# Create console handler
handler = logging.StreamHandler(sys.stdout)
handler.setLevel(_resolve_level())

formatter = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
handler.setFormatter(formatter)

# Add handler to logger if not already added
if not logger.handlers:
    logger.addHandler(handler)

# Prevent duplicate logs
logger.propagate = False

__all__ = ["logger"]
