"""
Tests for the query facade.

Covers fallback on fast-path failure, caching, in-flight sharing and the
refresh guard.
"""

import asyncio
import os
from pathlib import Path

import pytest

from conftest import NOW, TODAY, record
from usage_lens.config.loader import EngineConfig
from usage_lens.core.aggregation import ChartData
from usage_lens.core.backends import FastPathError, ParserBackend, QueryBackend, QueryRequest
from usage_lens.core.cache import TieredCache
from usage_lens.core.facade import PROJECTS_KEY, UsageQueryFacade
from usage_lens.core.periods import Period
from usage_lens.storage.scanner import ScanRootAccessError, scan_projects


class FailingBackend(QueryBackend):
    """Fast path that always fails."""

    name = "failing"

    def __init__(self):
        self.calls = 0

    async def compute(self, request: QueryRequest) -> ChartData:
        self.calls += 1
        raise FastPathError("engine exited with status 1")


class CountingBackend(QueryBackend):
    """Wraps a backend, counting calls and slowing them down."""

    name = "counting"

    def __init__(self, inner: QueryBackend, delay: float = 0.0):
        self.inner = inner
        self.delay = delay
        self.calls = 0

    async def compute(self, request: QueryRequest) -> ChartData:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return await self.inner.compute(request)


def _config(root: Path) -> EngineConfig:
    return EngineConfig(exchange_rate=150.0, timezone="UTC", custom_root_path=str(root))


def _facade(root: Path, **kwargs) -> UsageQueryFacade:
    return UsageQueryFacade(_config(root), clock=lambda: NOW, **kwargs)


class TestFallback:
    """Fast-path failure is invisible to the caller."""

    def test_scenario_d_matches_fallback_alone(self, usage_root, caplog):
        """Verify stats equal what the parser path alone computes."""
        failing = FailingBackend()
        facade = _facade(usage_root, primary=failing)

        with caplog.at_level("WARNING", logger="usage_lens.core.facade"):
            stats = asyncio.run(facade.get_period_stats("week"))

        reference = ParserBackend(facade.repository, facade.engine)
        request = QueryRequest(Period.WEEK, tuple(scan_projects(usage_root)), TODAY)
        expected = asyncio.run(reference.compute(request)).summary

        assert stats == expected
        assert failing.calls == 1
        assert any("FastPathError" in r.getMessage() for r in caplog.records)

    def test_fast_path_is_retried_on_next_call(self, usage_root):
        """Verify a failure does not disable the fast path."""
        failing = FailingBackend()
        facade = _facade(usage_root, primary=failing)

        asyncio.run(facade.get_chart_data("week"))
        facade.cache.clear()
        asyncio.run(facade.get_chart_data("week"))

        assert failing.calls == 2

    def test_default_backends_agree_with_fallback(self, usage_root):
        """Verify the default SQL path returns the fallback's totals."""
        fast = asyncio.run(_facade(usage_root).get_period_stats("all"))
        slow = asyncio.run(_facade(usage_root, primary=FailingBackend()).get_period_stats("all"))

        assert fast.total_tokens == slow.total_tokens == 474
        assert fast.cost_usd == pytest.approx(slow.cost_usd)


class TestCaching:
    """Results are cached until the inputs change."""

    def test_second_call_is_served_from_cache(self, usage_root):
        """Verify the backend runs once for repeated queries."""
        facade = _facade(usage_root)
        counting = CountingBackend(facade.fallback)
        facade.primary = counting

        async def run():
            first = await facade.get_chart_data("month")
            second = await facade.get_chart_data("month")
            return first, second

        first, second = asyncio.run(run())

        assert counting.calls == 1
        assert first.summary == second.summary

    def test_callers_get_copies(self, usage_root):
        """Verify mutating a result does not touch the cache."""
        facade = _facade(usage_root)

        async def run():
            chart = await facade.get_chart_data("week")
            chart.buckets[0].total_tokens = -1
            chart.buckets[0].hours.add(99)
            return await facade.get_chart_data("week")

        again = asyncio.run(run())
        assert again.buckets[0].total_tokens >= 0
        assert 99 not in again.buckets[0].hours

    def test_change_notification_recomputes(self, usage_root):
        """Verify an appended file is picked up after notify_change."""
        facade = _facade(usage_root)
        log_file = usage_root / "beta" / "session.jsonl"

        before = asyncio.run(facade.get_period_stats("today"))
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(record("2024-03-13T09:00:00Z", 1000, 0, cost=0.5) + "\n")
        stat = log_file.stat()
        os.utime(log_file, (stat.st_atime, stat.st_mtime + 5))

        assert facade.notify_change(log_file) > 0
        after = asyncio.run(facade.get_period_stats("today"))

        assert after.total_tokens == before.total_tokens + 1000

    def test_append_without_notification_recomputes(self, usage_root):
        """Verify a changed file mtime alone invalidates the cached chart."""
        facade = _facade(usage_root)
        counting = CountingBackend(facade.fallback)
        facade.primary = counting
        log_file = usage_root / "beta" / "session.jsonl"

        before = asyncio.run(facade.get_period_stats("today"))
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(record("2024-03-13T09:00:00Z", 1000, 0, cost=0.5) + "\n")
        stat = log_file.stat()
        os.utime(log_file, (stat.st_atime, stat.st_mtime + 5))

        after = asyncio.run(facade.get_period_stats("today"))

        assert after.total_tokens == before.total_tokens + 1000
        assert counting.calls == 2

    def test_new_file_in_existing_project_is_picked_up(self, usage_root):
        """Verify a file added to a project directory is counted."""
        facade = _facade(usage_root)
        before = asyncio.run(facade.get_period_stats("today"))

        new_file = usage_root / "alpha" / "session-3.jsonl"
        new_file.write_text(record("2024-03-13T10:00:00Z", 40, 2) + "\n", encoding="utf-8")
        root_stat = usage_root.stat()
        os.utime(new_file, (root_stat.st_atime, max(root_stat.st_mtime, new_file.stat().st_mtime) + 5))

        after = asyncio.run(facade.get_period_stats("today"))

        assert after.total_tokens == before.total_tokens + 42

    def test_expired_ttl_recomputes(self, usage_root):
        """Verify the backend runs again once both tiers have expired."""
        now = [1000.0]
        facade = _facade(usage_root, cache=TieredCache(clock=lambda: now[0]))
        counting = CountingBackend(facade.fallback)
        facade.primary = counting

        asyncio.run(facade.get_chart_data("week"))
        now[0] += 30
        asyncio.run(facade.get_chart_data("week"))
        assert counting.calls == 1

        now[0] += 61
        asyncio.run(facade.get_chart_data("week"))
        assert counting.calls == 2

    def test_projects_are_cached(self, usage_root):
        """Verify the project list is cached under its key."""
        facade = _facade(usage_root)
        projects = asyncio.run(facade.scan_projects())

        assert {p.name for p in projects} == {"alpha", "beta"}
        assert PROJECTS_KEY in facade.cache
        assert asyncio.run(facade.scan_projects()) == projects


class TestConcurrency:
    """Overlapping calls share one computation."""

    def test_concurrent_calls_share_one_computation(self, usage_root):
        """Verify five overlapping calls run the backend once."""
        facade = _facade(usage_root)
        counting = CountingBackend(facade.fallback, delay=0.05)
        facade.primary = counting

        async def run():
            return await asyncio.gather(*(facade.get_chart_data("week") for _ in range(5)))

        results = asyncio.run(run())

        assert counting.calls == 1
        assert len({r.summary for r in results}) == 1
        assert facade._inflight == {}

    def test_refresh_is_not_reentrant(self, usage_root):
        """Verify a second refresh during the first returns False."""
        facade = _facade(usage_root)
        facade.primary = CountingBackend(facade.fallback, delay=0.01)

        async def run():
            return await asyncio.gather(facade.refresh(), facade.refresh())

        assert asyncio.run(run()) == [True, False]
        assert not facade.refreshing

    def test_refresh_warms_every_period(self, usage_root):
        """Verify refresh leaves a cached chart for each period."""
        facade = _facade(usage_root)
        assert asyncio.run(facade.refresh(force=True))
        for period in Period:
            assert f"chart:{period.value}" in facade.cache

    def test_refresh_flag_cleared_on_error(self, tmp_path):
        """Verify a failing refresh does not leave the guard set."""
        facade = _facade(tmp_path / "projects")

        async def boom():
            raise RuntimeError("scan failed")

        facade._rescan = boom
        with pytest.raises(RuntimeError):
            asyncio.run(facade.refresh())
        assert not facade.refreshing


class TestErrors:
    """Caller-visible errors."""

    def test_unknown_period(self, usage_root):
        """Verify invalid period names raise ValueError."""
        with pytest.raises(ValueError, match="expected one of"):
            asyncio.run(_facade(usage_root).get_chart_data("fortnight"))

    def test_missing_root_gives_empty_result(self, tmp_path):
        """Verify a missing root yields zeros, not an error."""
        facade = _facade(tmp_path / "nowhere")
        assert asyncio.run(facade.scan_projects()) == []
        stats = asyncio.run(facade.get_period_stats("all"))
        assert stats.total_tokens == 0
        assert stats.estimated

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unreadable_root_surfaces(self, usage_root):
        """Verify the one hard error reaches the caller."""
        os.chmod(usage_root, 0)
        try:
            with pytest.raises(ScanRootAccessError):
                asyncio.run(_facade(usage_root).get_period_stats("week"))
        finally:
            os.chmod(usage_root, 0o755)
