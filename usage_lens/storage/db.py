"""
In-memory SQL engine for the bulk query path.

Raw log lines are loaded into a SQLite table and normalised into an
``entries`` table with the JSON1 functions. Timestamp parsing and
timezone bucketing are registered as SQL functions backed by the same
Python code the parser uses, so both query paths agree on which lines
count and where they land.
"""

import sqlite3
from typing import Any, Iterable, Optional, Tuple

from usage_lens.core.timezone import TimezoneResolver
from .parser import parse_timestamp


def _local_stamp_fn(resolver: TimezoneResolver):
    def local_stamp(value: Any) -> Optional[str]:
        instant = parse_timestamp(value)
        if instant is None:
            return None
        local = resolver.local_datetime(instant)
        if local is None:
            return None
        return "%sT%02d" % (local.date().isoformat(), local.hour)

    return local_stamp


def get_connection(resolver: TimezoneResolver, db_path: str = ":memory:") -> sqlite3.Connection:
    """Create a SQLite connection with the usage-log functions registered.

    ``local_stamp(ts)`` turns a raw ``timestamp`` field into the local
    ``YYYY-MM-DDTHH`` it belongs to, or NULL when it is not a timestamp.

    Args:
        resolver: Timezone used for bucketing
        db_path: Database location; in-memory by default

    Returns:
        SQLite connection with the raw-line schema created
    """
    conn = sqlite3.connect(db_path)
    conn.create_function("local_stamp", 1, _local_stamp_fn(resolver), deterministic=True)
    initialize_schema(conn)
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create the raw-line table. Lines are inserted once and never updated."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS raw_lines (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project TEXT NOT NULL,
            line TEXT NOT NULL
        )
    """)


def insert_lines(conn: sqlite3.Connection, rows: Iterable[Tuple[str, str]]) -> None:
    """Insert (project, line) rows in a single transaction."""
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.executemany("INSERT INTO raw_lines (project, line) VALUES (?, ?)", rows)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def build_entries(conn: sqlite3.Connection) -> None:
    """Normalise raw lines into one row per timestamped usage entry.

    Non-object lines and lines without a usable timestamp are left out.
    Token counts must be non-negative JSON integers and cost a
    non-negative number, matching the parser's validation.
    """
    conn.execute("""
        CREATE TABLE entries AS
        SELECT project, stamp,
               substr(stamp, 1, 10) AS day,
               CAST(substr(stamp, 12, 2) AS INTEGER) AS hour,
               has_usage, input_tokens, output_tokens,
               input_tokens + output_tokens AS total_tokens,
               cost_usd, kind
        FROM (
            SELECT project,
                   local_stamp(json_extract(line, '$.timestamp')) AS stamp,
                   CASE WHEN json_type(line, '$.message') = 'object'
                         AND json_type(line, '$.message.usage') = 'object'
                        THEN 1 ELSE 0 END AS has_usage,
                   CASE WHEN json_type(line, '$.message') = 'object'
                         AND json_type(line, '$.message.usage.input_tokens') = 'integer'
                         AND json_extract(line, '$.message.usage.input_tokens') >= 0
                        THEN json_extract(line, '$.message.usage.input_tokens') ELSE 0 END AS input_tokens,
                   CASE WHEN json_type(line, '$.message') = 'object'
                         AND json_type(line, '$.message.usage.output_tokens') = 'integer'
                         AND json_extract(line, '$.message.usage.output_tokens') >= 0
                        THEN json_extract(line, '$.message.usage.output_tokens') ELSE 0 END AS output_tokens,
                   CASE WHEN json_type(line, '$.costUSD') IN ('integer', 'real')
                         AND json_extract(line, '$.costUSD') >= 0
                        THEN CAST(json_extract(line, '$.costUSD') AS REAL) END AS cost_usd,
                   CASE WHEN json_type(line, '$.type') = 'text'
                        THEN json_extract(line, '$.type') ELSE '' END AS kind
            FROM raw_lines
            WHERE json_valid(line) AND json_type(line) = 'object'
        )
        WHERE stamp IS NOT NULL
    """)
