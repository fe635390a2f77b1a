"""
File-change watching for the scan root.

Forwards changes to ``.jsonl`` log files so cached results can be
invalidated and a debounced refresh scheduled.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional, Union

from watchfiles import Change, awatch

from usage_lens.storage.scanner import LOG_SUFFIX, expand_root

logger = logging.getLogger(__name__)


def is_log_change(root: Path, path: str) -> bool:
    """True for log files below ``root`` outside hidden directories."""
    candidate = Path(path)
    if candidate.suffix != LOG_SUFFIX:
        return False
    try:
        relative = candidate.parent.relative_to(root)
    except ValueError:
        return False
    return not any(part.startswith(".") for part in relative.parts)


async def watch_root(
    root: Union[str, Path],
    on_change: Callable[[str], None],
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Watch the scan root until ``stop_event`` is set.

    Args:
        root: Scan root; ``~`` is expanded
        on_change: Called once per changed log file path
        stop_event: Ends the watch when set
    """
    path = expand_root(root).resolve()
    if not path.is_dir():
        logger.warning("Not watching %s: directory not found", path)
        return

    def should_watch(_change: Change, changed_path: str) -> bool:
        return is_log_change(path, changed_path)

    logger.info("Watching %s for log changes", path)
    async for changes in awatch(path, watch_filter=should_watch, stop_event=stop_event):
        for change, changed_path in sorted(changes, key=lambda c: c[1]):
            logger.debug("Log %s: %s", change.name, changed_path)
            on_change(changed_path)
