"""
Project discovery under the scan root.

Walks the log tree and groups JSONL files into projects, one directory per
project. Scanning is a cheap directory listing and is redone on every call.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Union

from .models import FileRef, ProjectInfo

logger = logging.getLogger(__name__)

DEFAULT_ROOT = "~/.claude/projects"
LOG_SUFFIX = ".jsonl"


class ScanRootAccessError(PermissionError):
    """Raised when the scan root exists but cannot be listed."""

    def __init__(self, root: str, reason: str):
        super().__init__(f"Cannot read usage-log directory {root}: {reason}")
        self.root = root


def expand_root(path: Union[str, Path]) -> Path:
    """Expand ``~`` to the caller's home directory."""
    return Path(os.path.expanduser(str(path)))


def validate_path(path: Union[str, Path]) -> bool:
    """Return True only for an existing, readable directory."""
    resolved = expand_root(path)
    try:
        return resolved.is_dir() and os.access(resolved, os.R_OK | os.X_OK)
    except OSError:
        return False


def _walk_log_files(root: Path) -> Iterable[Path]:
    def _on_error(error: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", error.filename, error.strerror)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        # Hidden directories never hold project logs
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        if Path(dirpath) == root:
            continue
        for filename in sorted(filenames):
            if filename.endswith(LOG_SUFFIX):
                yield Path(dirpath) / filename


def scan_projects(root_path: Union[str, Path] = DEFAULT_ROOT) -> List[ProjectInfo]:
    """Scan the root directory for projects holding JSONL logs.

    A missing root is not an error and yields an empty list. Files are
    grouped by their immediate parent directory; files directly inside the
    root do not form a project.

    Args:
        root_path: Scan root; ``~`` is expanded before any filesystem access

    Returns:
        Projects sorted by most recent modification first

    Raises:
        ScanRootAccessError: If the root exists but cannot be read
    """
    root = expand_root(root_path)

    if not root.exists():
        logger.warning("Usage-log directory not found: %s", root)
        return []
    if not root.is_dir():
        logger.warning("Usage-log path is not a directory: %s", root)
        return []
    if not validate_path(root):
        raise ScanRootAccessError(str(root), "permission denied")
    try:
        os.listdir(root)
    except OSError as e:
        raise ScanRootAccessError(str(root), e.strerror or str(e)) from e

    grouped: Dict[Path, List[FileRef]] = {}
    for file_path in _walk_log_files(root):
        try:
            stat = file_path.stat()
        except OSError as e:
            logger.warning("Skipping unreadable file %s: %s", file_path, e)
            continue
        grouped.setdefault(file_path.parent, []).append(FileRef(
            path=str(file_path),
            size_bytes=stat.st_size,
            mod_time_ms=stat.st_mtime * 1000.0,
        ))

    projects = [
        ProjectInfo(
            name=directory.name,
            path=str(directory),
            files=tuple(files),
            last_modified=max(f.mod_time_ms for f in files),
        )
        for directory, files in grouped.items()
    ]
    projects.sort(key=lambda p: (-p.last_modified, p.name, p.path))

    logger.info("Found %d projects under %s", len(projects), root)
    return projects


def root_mod_time(root_path: Union[str, Path]) -> float:
    """Modification time of the root directory in ms, 0 if it is missing."""
    try:
        return expand_root(root_path).stat().st_mtime * 1000.0
    except OSError:
        return 0.0


def latest_mod_time(projects: Iterable[ProjectInfo], root_path: Union[str, Path]) -> float:
    """Newest modification time across the root and every project.

    The root's own mtime catches added or removed project directories.
    """
    newest = root_mod_time(root_path)
    for project in projects:
        newest = max(newest, project.last_modified)
    return newest
