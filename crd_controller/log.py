import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger, writing to ``log_file`` when one is given."""
    kwargs = {"format": LOG_FORMAT, "level": getattr(logging, level.upper(), logging.INFO)}
    if log_file:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        kwargs["filename"] = log_file
    logging.basicConfig(**kwargs)
