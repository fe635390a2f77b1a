"""
JSONL usage-log parsing.

Turns one file's bytes into validated log entries. Small files are read in
one go; files above the streaming threshold are read line by line so memory
stays flat. Both strategies split on the same byte boundaries and therefore
yield identical entries for identical content.
"""

import json
import logging
import math
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from usage_lens.core.token_counter import TokenUsage
from .models import LineError, LogEntry, ParseResult

logger = logging.getLogger(__name__)

STREAMING_THRESHOLD_BYTES = 10 * 1024 * 1024

# Only the first few bad lines of a file are logged loudly
MAX_LOGGED_ERRORS = 10


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive timestamps are taken as UTC.

    Args:
        value: Raw ``timestamp`` field from a log record

    Returns:
        Aware datetime in UTC, or None if the value is not a usable timestamp
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _token_count(value: Any) -> int:
    # bool is an int subclass; reject it along with floats and negatives
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def _cost(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0 or not math.isfinite(value):
        return None
    return float(value)


def parse_record(record: Dict[str, Any], project_name: str = "") -> Optional[LogEntry]:
    """Build a LogEntry from one decoded JSON object.

    Args:
        record: Decoded JSON object
        project_name: Project the record's file belongs to

    Returns:
        LogEntry, or None if the record has no usable timestamp
    """
    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is None:
        return None

    usage = None
    message = record.get("message")
    if isinstance(message, dict):
        raw_usage = message.get("usage")
        if isinstance(raw_usage, dict):
            usage = TokenUsage(
                input_tokens=_token_count(raw_usage.get("input_tokens")),
                output_tokens=_token_count(raw_usage.get("output_tokens")),
            )

    kind = record.get("type")
    return LogEntry(
        timestamp=timestamp,
        project_name=project_name,
        usage=usage,
        cost_usd=_cost(record.get("costUSD")),
        kind=kind if isinstance(kind, str) else "",
    )


def _iter_bulk(path: Path) -> Iterator[bytes]:
    yield from path.read_bytes().split(b"\n")


def _iter_streaming(path: Path) -> Iterator[bytes]:
    with open(path, "rb") as f:
        for raw in f:
            yield raw[:-1] if raw.endswith(b"\n") else raw


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON; SQLite json_valid rejects them too
    raise ValueError(f"non-standard constant {name}")


def decode_line(raw: bytes) -> str:
    """Decode one raw line; invalid UTF-8 is replaced, never raised."""
    return raw.decode("utf-8", errors="replace").rstrip("\r")


def open_lines(path: Union[str, Path], size_bytes: Optional[int] = None) -> Tuple[str, Iterator[bytes]]:
    """Pick the read strategy for a file and iterate its raw lines.

    Args:
        path: File to read
        size_bytes: Known file size; the file is stat'ed when omitted

    Returns:
        Tuple of (strategy name, iterator over lines without ``\\n``)

    Raises:
        OSError: If the file cannot be stat'ed
    """
    file_path = Path(path)
    if size_bytes is None:
        size_bytes = file_path.stat().st_size

    if size_bytes > STREAMING_THRESHOLD_BYTES:
        logger.info(
            "Streaming large file %s (%.1f MB)", file_path.name, size_bytes / (1024 * 1024)
        )
        return "streaming", _iter_streaming(file_path)
    return "bulk", _iter_bulk(file_path)


def parse_lines(
    lines: Iterable[bytes],
    source: str,
    project_name: str = "",
) -> Tuple[List[LogEntry], List[LineError], int]:
    """Decode raw lines into entries, collecting per-line errors.

    A bad line never aborts the rest of the input.

    Args:
        lines: Raw lines without their ``\\n`` terminator
        source: File path used in error records and log messages
        project_name: Project assigned to every entry

    Returns:
        Tuple of (entries, errors, non-blank line count)
    """
    entries: List[LogEntry] = []
    errors: List[LineError] = []
    line_count = 0

    for line_number, raw in enumerate(lines, start=1):
        text = decode_line(raw)
        if not text.strip():
            continue
        line_count += 1

        try:
            record = json.loads(text, parse_constant=_reject_constant)
        except ValueError as e:
            error = LineError(source, line_number, f"invalid JSON: {e}")
        else:
            if isinstance(record, dict):
                entry = parse_record(record, project_name)
                if entry is not None:
                    entries.append(entry)
                continue
            error = LineError(source, line_number, f"expected JSON object, got {type(record).__name__}")

        errors.append(error)
        if len(errors) <= MAX_LOGGED_ERRORS:
            logger.warning("Skipping line %d in %s: %s", line_number, os.path.basename(source), error.message)
        else:
            logger.debug("Skipping line %d in %s: %s", line_number, source, error.message)

    return entries, errors, line_count


def parse_file(
    path: Union[str, Path],
    size_bytes: Optional[int] = None,
    project_name: str = "",
) -> ParseResult:
    """Parse one JSONL log file.

    Files larger than STREAMING_THRESHOLD_BYTES are streamed line by line;
    smaller files are read whole. Output order follows the file, which is not
    guaranteed to be timestamp-sorted.

    Args:
        path: File to read
        size_bytes: Known file size; the file is stat'ed when omitted
        project_name: Project assigned to every entry

    Returns:
        ParseResult with entries and per-line errors

    Raises:
        OSError: If the file cannot be opened or read
    """
    file_path = Path(path)
    strategy, lines = open_lines(file_path, size_bytes)
    entries, errors, line_count = parse_lines(lines, str(file_path), project_name)

    logger.info(
        "Parsed %s: %d entries from %d lines (%d errors)",
        file_path.name, len(entries), line_count, len(errors),
    )
    return ParseResult(entries=entries, errors=errors, lines=line_count, strategy=strategy)
