"""
Query facade.

The single entry point consumers call. Results are served from the tiered
cache when the inputs are unchanged; otherwise the fast SQL path computes
them and the parser path takes over transparently if it fails.
"""

import asyncio
import copy
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from usage_lens.config.loader import EngineConfig
from usage_lens.storage.models import ProjectInfo
from usage_lens.storage.repository import LOGS_PREFIX, LogRepository
from usage_lens.storage.scanner import latest_mod_time, root_mod_time, scan_projects
from .aggregation import AggregationEngine, ChartData, PeriodSummary
from .backends import ParserBackend, QueryBackend, QueryRequest, SqliteBackend
from .cache import CacheTier, TieredCache
from .periods import Period, parse_period
from .timezone import TimezoneResolver

logger = logging.getLogger(__name__)

PROJECTS_KEY = "projects:list"
CHART_PREFIX = "chart:"


def chart_key(period: Period) -> str:
    return f"{CHART_PREFIX}{period.value}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageQueryFacade:
    """Scans, aggregates and caches usage for the rendering layer.

    Safe to call concurrently from one event loop: requests for the same
    period and the same source state share one in-flight computation, so a
    result is never assembled from two different snapshots of the files.

    Args:
        config: Engine configuration; the only source of rate, zone and root
        cache: Cache shared by every component; a new one when omitted
        primary: Fast path backend, SqliteBackend by default
        fallback: Backend used when the primary one fails, ParserBackend by default
        clock: Returns the current instant; injected for deterministic tests
    """

    def __init__(
        self,
        config: EngineConfig,
        cache: Optional[TieredCache] = None,
        primary: Optional[QueryBackend] = None,
        fallback: Optional[QueryBackend] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.cache = cache if cache is not None else TieredCache()
        self.resolver = TimezoneResolver(config.timezone)
        self.engine = AggregationEngine(self.resolver, config.exchange_rate)
        self.repository = LogRepository(self.cache)
        self.primary = primary if primary is not None else SqliteBackend(self.engine)
        self.fallback = fallback if fallback is not None else ParserBackend(self.repository, self.engine)
        self._clock = clock or _utc_now
        self._inflight: Dict[Tuple[str, float], "asyncio.Future[ChartData]"] = {}
        self._refreshing = False
        self._last_source_mod_time: Optional[float] = None

    @property
    def root_path(self) -> Path:
        return self.config.root_path

    def today(self) -> date:
        """Current local date under the configured zone."""
        return self.resolver.local_datetime(self._clock()).date()

    async def scan_projects(self) -> List[ProjectInfo]:
        """Projects under the scan root.

        Raises:
            ScanRootAccessError: If the root exists but cannot be read
        """
        source = root_mod_time(self.root_path)
        cached = self.cache.get(PROJECTS_KEY, source, expected_type=tuple)
        if cached is not None:
            return list(cached)

        return await self._rescan()

    async def _rescan(self) -> List[ProjectInfo]:
        source = root_mod_time(self.root_path)
        projects = await asyncio.to_thread(scan_projects, self.root_path)
        self.cache.set(PROJECTS_KEY, tuple(projects), source, CacheTier.BASE)
        return projects

    async def get_chart_data(self, period: Union[str, Period]) -> ChartData:
        """Buckets, labels, project breakdown and comparison for a period.

        Raises:
            ValueError: If the period name is unknown
            ScanRootAccessError: If the root exists but cannot be read
        """
        period = parse_period(period)
        # Appends do not touch the root mtime, so file mtimes come from a fresh listing
        projects = await self._rescan()
        source = latest_mod_time(projects, self.root_path)
        key = chart_key(period)

        cached = self.cache.get(key, source, expected_type=ChartData)
        if cached is None:
            request = QueryRequest(period=period, projects=tuple(projects), now=self.today())
            cached = await self._shared_compute(key, source, request)
        # Callers get their own copy; cached buckets stay untouched
        return copy.deepcopy(cached)

    async def get_period_stats(self, period: Union[str, Period]) -> PeriodSummary:
        """Summary of a single period."""
        return (await self.get_chart_data(period)).summary

    async def _shared_compute(self, key: str, source: float, request: QueryRequest) -> ChartData:
        flight = (key, source)
        task = self._inflight.get(flight)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, source, request))
            self._inflight[flight] = task
            task.add_done_callback(lambda done: self._forget(flight, done))
        else:
            logger.debug("Joining in-flight computation for %s", key)
        return await asyncio.shield(task)

    def _forget(self, flight: Tuple[str, float], task: "asyncio.Future[ChartData]") -> None:
        if self._inflight.get(flight) is task:
            del self._inflight[flight]

    async def _compute(self, key: str, source: float, request: QueryRequest) -> ChartData:
        try:
            result = await self.primary.compute(request)
        except Exception as e:
            logger.warning(
                "Fast path %s failed (%s: %s); using %s",
                self.primary.name, type(e).__name__, e, self.fallback.name,
            )
            result = await self.fallback.compute(request)

        self.cache.set(key, result, source, CacheTier.BASE)
        self.cache.set(key, result, source, CacheTier.FAST)
        return result

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    async def refresh(self, force: bool = False) -> bool:
        """Rescan and warm every period.

        Only one refresh runs at a time; a call made while one is running
        returns False without doing anything.

        Args:
            force: Drop every cached value first

        Returns:
            True when this call performed the refresh
        """
        if self._refreshing:
            logger.debug("Refresh already running; request coalesced")
            return False
        self._refreshing = True
        try:
            if force:
                self.cache.clear()
            projects = await self._rescan()
            source = latest_mod_time(projects, self.root_path)
            if source != self._last_source_mod_time:
                self.cache.invalidate(CHART_PREFIX)
                self._last_source_mod_time = source
            for period in Period:
                await self.get_chart_data(period)
            return True
        finally:
            self._refreshing = False

    def notify_change(self, path: Union[str, Path]) -> int:
        """Drop cached values derived from a changed log file.

        Returns:
            Number of cache entries removed
        """
        project_dir = str(Path(path).parent)
        removed = self.cache.invalidate(f"{LOGS_PREFIX}{project_dir}")
        removed += self.cache.invalidate(CHART_PREFIX)
        removed += self.cache.invalidate(PROJECTS_KEY)
        return removed
