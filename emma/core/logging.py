# emma/core/logging.py
import logging

from emma.core.config import settings
from emma.utils.logger import get_logger


def setup_logging(level: str | None = None) -> None:
    """
    Install the JSON formatter on the root logger.
    Safe to call more than once.
    """
    level_name = (level or settings.log_level or "INFO").upper()
    get_logger("", getattr(logging, level_name, logging.INFO))

    # supabase and openai clients log every request through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
