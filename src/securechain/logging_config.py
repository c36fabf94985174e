"""Root logger configuration.

``setup_logging`` is idempotent: the first call wins, later calls are
no-ops so library users and the CLI can both call it safely.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def setup_logging(level: str = "INFO", fmt: str = "rich") -> None:
    """Configure the root logger.

    Args:
        level: Logging level name (``DEBUG``, ``INFO`` ...)
        fmt: ``rich`` for a RichHandler, ``text`` for plain lines
    """
    global _configured
    if _configured:
        return
    _configured = True

    if fmt == "rich":
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format="%(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
            ],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=LOG_FORMAT,
            datefmt=LOG_DATEFMT,
        )
