# tradebook/logging_setup.py
"""Process-wide logging configuration."""

import logging
from typing import Optional

from tradebook.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once. Later calls only adjust the level."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level_name)
        return
    logging.basicConfig(level=level_name, format=LOG_FORMAT)
