"""
Repository pattern for log access.

Loads the entries of each project through the parser and keeps them in the
cache until the project's files change.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from usage_lens.core.cache import CacheTier, TieredCache
from .models import LogEntry, ProjectInfo
from .parser import parse_file

logger = logging.getLogger(__name__)

LOGS_PREFIX = "logs:"


def logs_key(project_path: str) -> str:
    return f"{LOGS_PREFIX}{project_path}"


class LogRepository:
    """Per-project access to parsed log entries.

    Entries are cached under ``logs:<projectPath>`` and checked against the
    project's ``last_modified``, so an appended file is re-read on the next
    load. Unreadable files contribute nothing.
    """

    def __init__(self, cache: Optional[TieredCache] = None):
        self.cache = cache if cache is not None else TieredCache()

    @staticmethod
    def read_project(project: ProjectInfo) -> Tuple[LogEntry, ...]:
        """Parse every file of a project synchronously."""
        entries: List[LogEntry] = []
        for ref in project.files:
            try:
                result = parse_file(ref.path, ref.size_bytes, project_name=project.name)
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", ref.path, e)
                continue
            entries.extend(result.entries)
        return tuple(entries)

    async def load_project(self, project: ProjectInfo) -> Tuple[LogEntry, ...]:
        """Entries of one project, from cache when its files are unchanged."""
        key = logs_key(project.path)
        cached = self.cache.get(key, project.last_modified, expected_type=tuple)
        if cached is not None:
            return cached

        entries = await asyncio.to_thread(self.read_project, project)
        self.cache.set(key, entries, project.last_modified, CacheTier.BASE)
        return entries

    async def load_all(self, projects: Iterable[ProjectInfo]) -> List[LogEntry]:
        """Entries of all projects, loaded concurrently."""
        results = await asyncio.gather(*(self.load_project(p) for p in projects))
        entries: List[LogEntry] = []
        for project_entries in results:
            entries.extend(project_entries)
        return entries
