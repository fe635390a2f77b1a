"""
Data models for the storage layer.

Defines the records read from usage-log files and the file tree they live in.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from usage_lens.core.token_counter import TokenUsage


@dataclass(frozen=True)
class LogEntry:
    """One usage event read from a JSONL log line.

    Entries are read-only copies of what the producing tool wrote. Token and
    cost sums only consider entries that carry ``usage`` or ``cost_usd``;
    every entry counts towards message totals through its ``kind``.
    """
    timestamp: datetime
    project_name: str = ""
    usage: Optional[TokenUsage] = None
    cost_usd: Optional[float] = None
    kind: str = ""

    @property
    def total_tokens(self) -> int:
        """Tokens carried by this entry (0 without usage)."""
        return self.usage.total_tokens if self.usage else 0

    @property
    def has_usage(self) -> bool:
        return self.usage is not None


@dataclass(frozen=True)
class LineError:
    """A line that could not be decoded. Recorded, never raised."""
    path: str
    line_number: int
    message: str


@dataclass
class ParseResult:
    """Outcome of parsing one log file."""
    entries: List[LogEntry]
    errors: List[LineError]
    lines: int = 0
    strategy: str = "bulk"


@dataclass(frozen=True)
class FileRef:
    """A log file found by the scanner."""
    path: str
    size_bytes: int
    mod_time_ms: float


@dataclass(frozen=True)
class ProjectInfo:
    """One directory of log files under the scan root.

    Rebuilt on every scan; ``last_modified`` is the newest file
    modification time and serves as the project's cache signal.
    """
    name: str
    path: str
    files: Tuple[FileRef, ...]
    last_modified: float

    @property
    def total_size(self) -> int:
        return sum(f.size_bytes for f in self.files)
