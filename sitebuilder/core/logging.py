import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import LOG_LEVEL, LOG_PATH, LOG_TO_CONSOLE

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logger() -> logging.Logger:
    root = logging.getLogger("sitebuilder")
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # uvicorn --reload imports the app twice
    if root.handlers:
        return root

    formatter = logging.Formatter(LOG_FORMAT)

    # ~2MB per file, 5 backups
    file_handler = RotatingFileHandler(
        LOG_PATH,
        maxBytes=2_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if LOG_TO_CONSOLE:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    root.propagate = False
    root.info("Logging to %s level=%s", LOG_PATH, LOG_LEVEL)
    return root


def get_logger(component: str) -> logging.Logger:
    """Child logger, e.g. ``sitebuilder.auth``, sharing the root handlers."""
    return logger.getChild(component)


logger = setup_logger()
