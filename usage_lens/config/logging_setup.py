"""
Logging setup for the command line.

Library modules only create loggers; handlers are installed here, once, by
the CLI.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int = logging.WARNING, console: Console = None) -> None:
    """Route ``usage_lens`` log records through rich.

    Args:
        level: Minimum level to show
        console: Console to write to; stderr when omitted
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("usage_lens")
    for existing in list(logger.handlers):
        if isinstance(existing, RichHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
