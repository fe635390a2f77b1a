"""
Query backends.

Two interchangeable ways of computing a period's chart data from the
scanned projects:

- SqliteBackend loads raw lines into an in-memory SQLite database and lets
  SQL do the grouping. It is the fast bulk path.
- ParserBackend parses every file and folds the entries in Python. It is
  the fallback used whenever the fast path fails.

Both return the same ChartData shape, so callers cannot tell which one ran.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from usage_lens.storage import db
from usage_lens.storage.models import ProjectInfo
from usage_lens.storage.parser import decode_line, open_lines
from usage_lens.storage.repository import LogRepository
from .aggregation import (
    PROJECT_BREAKDOWN_LIMIT,
    AggregationEngine,
    Bucket,
    ChartData,
    ProjectBreakdown,
    comparison_series,
    current_series_window,
    summarize_totals,
    weeks_from_days,
)
from .periods import (
    DateWindow,
    Granularity,
    Period,
    bucket_label,
    comparison_window,
    period_window,
    select_granularity,
    week_start,
)
from .pricing import usd_to_local

logger = logging.getLogger(__name__)

DEFAULT_FAST_PATH_TIMEOUT = 10.0


class FastPathError(RuntimeError):
    """The bulk query path failed; the caller should fall back."""


@dataclass(frozen=True)
class QueryRequest:
    """Inputs of one chart computation.

    ``now`` is the current local date, fixed for the whole computation.
    """
    period: Period
    projects: Tuple[ProjectInfo, ...]
    now: date


class QueryBackend(ABC):
    """Computes ChartData for a request."""

    name = "backend"

    @abstractmethod
    async def compute(self, request: QueryRequest) -> ChartData:
        ...


class ParserBackend(QueryBackend):
    """Entry Parser plus Aggregation Engine, entirely in process."""

    name = "parser"

    def __init__(self, repository: LogRepository, engine: AggregationEngine):
        self.repository = repository
        self.engine = engine

    async def compute(self, request: QueryRequest) -> ChartData:
        entries = await self.repository.load_all(request.projects)
        return await asyncio.to_thread(self.engine.build_chart, entries, request.period, request.now)


def _window_sql(window: Optional[DateWindow]) -> Tuple[str, List[str]]:
    if window is None:
        return "1 = 1", []
    return "day >= ? AND day < ?", [window.start.isoformat(), window.end.isoformat()]


_BUCKET_KEYS = {
    Granularity.HOURLY: "hour",
    Granularity.DAILY: "day",
    Granularity.WEEKLY: "day",
    Granularity.MONTHLY: "substr(day, 1, 7)",
}


class SqliteBackend(QueryBackend):
    """Bulk path: GROUP BY queries over an in-memory SQLite copy of the logs.

    The work runs in a worker thread under a timeout. Any failure is raised
    as FastPathError. A timed-out thread cannot be interrupted and keeps
    running to completion; it works on its own resolver copy so the
    fallback never shares state with it.

    Args:
        engine: Supplies the timezone, exchange rate and estimate rates
        timeout: Seconds before the computation is abandoned
    """

    name = "sqlite"

    def __init__(self, engine: AggregationEngine, timeout: float = DEFAULT_FAST_PATH_TIMEOUT):
        self.engine = engine
        self.timeout = timeout

    async def compute(self, request: QueryRequest) -> ChartData:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.compute_sync, request), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise FastPathError(f"SQL query timed out after {self.timeout:.1f}s")
        except FastPathError:
            raise
        except Exception as e:
            raise FastPathError(f"SQL query failed: {e}") from e

    def _load(self, conn, projects: Sequence[ProjectInfo]) -> None:
        for project in projects:
            for ref in project.files:
                try:
                    _, lines = open_lines(ref.path, ref.size_bytes)
                    rows = [
                        (project.name, text)
                        for text in (decode_line(raw) for raw in lines)
                        if text.strip()
                    ]
                except OSError as e:
                    logger.warning("Skipping unreadable file %s: %s", ref.path, e)
                    continue
                db.insert_lines(conn, rows)
        db.build_entries(conn)

    def compute_sync(self, request: QueryRequest) -> ChartData:
        """Run the whole computation on a fresh in-memory database."""
        conn = db.get_connection(self.engine.resolver.fork())
        try:
            self._load(conn, request.projects)
            return self._query(conn, request)
        finally:
            conn.close()

    def _query(self, conn, request: QueryRequest) -> ChartData:
        period, today = request.period, request.now
        rate = self.engine.exchange_rate

        range_days = conn.execute("SELECT COUNT(DISTINCT day) FROM entries").fetchone()[0]
        granularity = select_granularity(period, range_days)
        window = period_window(period, today)
        where, params = _window_sql(window)

        buckets = self._buckets(conn, granularity, where, params)
        if granularity is Granularity.HOURLY:
            by_hour = {b.key: b for b in buckets}
            buckets = [by_hour.get(hour) or Bucket(hour) for hour in range(24)]

        hourly = [0] * 24
        for hour, tokens in conn.execute(
            f"SELECT hour, SUM(total_tokens) FROM entries WHERE {where} GROUP BY hour", params
        ):
            hourly[hour] = tokens

        comparison = None
        previous_window = comparison_window(period, today)
        if previous_window is not None:
            comparison = comparison_series(
                period,
                granularity,
                self._day_hour_rows(conn, current_series_window(period, today)),
                self._day_hour_rows(conn, previous_window),
                previous_window,
            )

        weekly = []
        if granularity is Granularity.DAILY:
            weekly = weeks_from_days(
                (date.fromisoformat(day), tokens)
                for day, tokens in conn.execute(
                    f"SELECT day, SUM(total_tokens) FROM entries WHERE {where} GROUP BY day", params
                )
            )

        projects = [
            ProjectBreakdown(name=name, total_tokens=tokens, cost_usd=cost, entries=count)
            for name, tokens, cost, count in conn.execute(
                f"""
                SELECT CASE WHEN project = '' THEN 'Unknown' ELSE project END AS name,
                       SUM(total_tokens) AS tokens, TOTAL(cost_usd), COUNT(*)
                FROM entries WHERE {where}
                GROUP BY name ORDER BY tokens DESC, name LIMIT ?
                """,
                params + [PROJECT_BREAKDOWN_LIMIT],
            )
        ]

        (count, calls, input_tokens, output_tokens, cost, cost_count, hours, date_hours,
         days, project_count, users, assistants) = conn.execute(
            f"""
            SELECT COUNT(*), TOTAL(has_usage), TOTAL(input_tokens), TOTAL(output_tokens),
                   TOTAL(cost_usd), COUNT(cost_usd),
                   COUNT(DISTINCT hour), COUNT(DISTINCT stamp), COUNT(DISTINCT day),
                   COUNT(DISTINCT NULLIF(project, '')),
                   TOTAL(kind = 'user'), TOTAL(kind = 'assistant')
            FROM entries WHERE {where}
            """,
            params,
        ).fetchone()
        totals = Bucket(
            "total",
            total_tokens=int(input_tokens + output_tokens),
            input_tokens=int(input_tokens),
            output_tokens=int(output_tokens),
            cost_usd=cost,
            entries=count,
        )
        summary = summarize_totals(
            period=period,
            totals=totals,
            any_cost=cost_count > 0,
            calls=int(calls),
            active_hours=hours if period is Period.TODAY else date_hours,
            active_days=days,
            project_count=project_count,
            user_messages=int(users),
            assistant_messages=int(assistants),
            exchange_rate=rate,
            rates=self.engine.rates,
        )

        return ChartData(
            period=period.value,
            granularity=granularity,
            buckets=tuple(buckets),
            labels=tuple(bucket_label(granularity, b.key) for b in buckets),
            hourly_tokens=tuple(hourly),
            project_breakdown=tuple(projects),
            comparison=comparison,
            weekly=tuple(weekly),
            summary=summary,
        )

    def _buckets(self, conn, granularity: Granularity, where: str, params: List[str]) -> List[Bucket]:
        key_sql = _BUCKET_KEYS[granularity]
        rows = conn.execute(
            f"""
            SELECT {key_sql} AS bucket, SUM(input_tokens), SUM(output_tokens),
                   TOTAL(cost_usd), COUNT(*), GROUP_CONCAT(DISTINCT hour)
            FROM entries WHERE {where}
            GROUP BY bucket ORDER BY bucket
            """,
            params,
        ).fetchall()

        buckets: Dict[object, Bucket] = {}
        for key, input_tokens, output_tokens, cost, count, hours in rows:
            if granularity is Granularity.WEEKLY:
                # SQLite has no Sunday-start week, so days are folded here
                key = week_start(date.fromisoformat(key)).isoformat()
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = Bucket(key)
            bucket.input_tokens += input_tokens
            bucket.output_tokens += output_tokens
            bucket.total_tokens += input_tokens + output_tokens
            bucket.cost_usd += cost
            bucket.entries += count
            if granularity is Granularity.DAILY:
                bucket.hours.update(int(h) for h in str(hours).split(","))

        ordered = [buckets[k] for k in sorted(buckets)]
        for bucket in ordered:
            bucket.cost_local = usd_to_local(bucket.cost_usd, self.engine.exchange_rate)
        return ordered

    def _day_hour_rows(self, conn, window: Optional[DateWindow]):
        where, params = _window_sql(window)
        return [
            (date.fromisoformat(day), hour, tokens)
            for day, hour, tokens in conn.execute(
                f"SELECT day, hour, SUM(total_tokens) FROM entries WHERE {where} GROUP BY day, hour",
                params,
            )
        ]
