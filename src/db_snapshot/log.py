"""Logging configuration for the CLI and the HTTP service."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: int | str = logging.INFO) -> None:
    """Route all records through one rich handler on stderr.

    Args:
        level: Level name (``"DEBUG"``, ``"info"`` ...) or number.
    """
    if isinstance(level, str):
        level = level.upper()

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Request-level noise from the HTTP clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
