"""
Usage aggregation.

Folds log entries into hour, day, week, month and project buckets and rolls a
period up into a single summary. All bucketing happens on local calendar
time as resolved by the TimezoneResolver.

Active hours are counted two ways depending on the period:
- single-day periods count distinct local hours (0-23) with an entry
- multi-day periods count distinct (date, hour) pairs, so the same hour on
  two days counts twice

Neither is the wall-clock span between the first and last entry.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from usage_lens.storage.models import LogEntry
from .periods import (
    DateWindow,
    Granularity,
    Period,
    bucket_label,
    comparison_slots,
    comparison_window,
    parse_period,
    period_window,
    select_granularity,
    week_start,
)
from .pricing import DEFAULT_RATES, EstimateRates, estimate_cost, usd_to_local
from .timezone import TimezoneResolver
from .token_counter import TokenUsage

BucketKey = Union[int, str]

# Project breakdown shows the heaviest projects only
PROJECT_BREAKDOWN_LIMIT = 8
RECENT_WEEKS = 4


@dataclass
class Bucket:
    """Running sums for one time bucket.

    ``entries`` counts every timestamped entry in the bucket; token and cost
    sums only include entries that carry usage or cost. ``hours`` is only
    filled for daily buckets.
    """
    key: BucketKey
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    cost_local: float = 0.0
    entries: int = 0
    hours: Set[int] = field(default_factory=set)

    def add(self, entry: LogEntry, hour: Optional[int] = None) -> None:
        self.entries += 1
        if entry.usage is not None:
            self.input_tokens += entry.usage.input_tokens
            self.output_tokens += entry.usage.output_tokens
            self.total_tokens += entry.usage.total_tokens
        if entry.cost_usd is not None:
            self.cost_usd += entry.cost_usd
        if hour is not None:
            self.hours.add(hour)

    def to_dict(self) -> Dict[str, object]:
        data = {
            "key": self.key,
            "total_tokens": self.total_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": self.cost_usd,
            "cost_local": self.cost_local,
            "entries": self.entries,
        }
        if self.hours:
            data["active_hours"] = sorted(self.hours)
        return data


@dataclass(frozen=True)
class PeriodSummary:
    """Single-period rollup returned to callers."""
    period: str
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    cost_local: float
    estimated: bool
    entries: int
    calls: int
    active_hours: int
    active_days: int
    project_count: int
    user_messages: int = 0
    assistant_messages: int = 0


@dataclass(frozen=True)
class ProjectBreakdown:
    """Usage of one project within a period."""
    name: str
    total_tokens: int
    cost_usd: float
    entries: int


@dataclass(frozen=True)
class WeekSummary:
    """Tokens per weekday for one Sunday-start week."""
    week_start: str
    daily_tokens: Tuple[int, ...]
    total_tokens: int


@dataclass(frozen=True)
class ComparisonSeries:
    """Current period lined up slot by slot against its predecessor."""
    labels: Tuple[str, ...]
    current: Tuple[int, ...]
    previous: Tuple[int, ...]
    current_label: str
    previous_label: str
    window: DateWindow


@dataclass(frozen=True)
class ChartData:
    """Everything the rendering layer needs to draw one period."""
    period: str
    granularity: Granularity
    buckets: Tuple[Bucket, ...]
    labels: Tuple[str, ...]
    hourly_tokens: Tuple[int, ...]
    project_breakdown: Tuple[ProjectBreakdown, ...]
    comparison: Optional[ComparisonSeries]
    weekly: Tuple[WeekSummary, ...]
    summary: PeriodSummary


def summarize_totals(
    period: Period,
    totals: Bucket,
    any_cost: bool,
    calls: int,
    active_hours: int,
    active_days: int,
    project_count: int,
    user_messages: int,
    assistant_messages: int,
    exchange_rate: float,
    rates: EstimateRates = DEFAULT_RATES,
) -> PeriodSummary:
    """Build a PeriodSummary from pre-computed sums.

    When no entry carried a logged cost, the cost is estimated from tokens
    and the summary is flagged as estimated.
    """
    if any_cost:
        cost_usd = totals.cost_usd
    else:
        cost_usd = estimate_cost(TokenUsage(totals.input_tokens, totals.output_tokens), rates)
    return PeriodSummary(
        period=period.value,
        total_tokens=totals.total_tokens,
        input_tokens=totals.input_tokens,
        output_tokens=totals.output_tokens,
        cost_usd=cost_usd,
        cost_local=usd_to_local(cost_usd, exchange_rate),
        estimated=not any_cost,
        entries=totals.entries,
        calls=calls,
        active_hours=active_hours,
        active_days=active_days,
        project_count=project_count,
        user_messages=user_messages,
        assistant_messages=assistant_messages,
    )


def comparison_series(
    period: Period,
    granularity: Granularity,
    current_rows: Iterable[Tuple[date, int, int]],
    previous_rows: Iterable[Tuple[date, int, int]],
    window: DateWindow,
) -> ComparisonSeries:
    """Line up (local date, hour, tokens) rows of two periods.

    Args:
        period: Requested period
        granularity: Granularity of the requested period
        current_rows: Rows of the current period
        previous_rows: Rows of the comparison window
        window: The comparison window

    Returns:
        ComparisonSeries with one value per slot for both periods
    """
    labels, slot = comparison_slots(granularity, period)
    current = [0] * len(labels)
    previous = [0] * len(labels)
    for day, hour, tokens in current_rows:
        current[slot(day, hour)] += tokens
    for day, hour, tokens in previous_rows:
        previous[slot(day, hour)] += tokens
    return ComparisonSeries(
        labels=tuple(labels),
        current=tuple(current),
        previous=tuple(previous),
        current_label=_CURRENT_LABELS[period],
        previous_label=window.label,
        window=window,
    )


_CURRENT_LABELS = {
    Period.TODAY: "today",
    Period.WEEK: "this week",
    Period.MONTH: "this month",
    Period.YEAR: "this year",
    Period.ALL: "this year",
}


def weeks_from_days(day_tokens: Iterable[Tuple[date, int]], count: int = RECENT_WEEKS) -> List[WeekSummary]:
    """Group (local date, tokens) pairs into the latest Sunday-start weeks."""
    weeks: Dict[date, List[int]] = {}
    for day, tokens in day_tokens:
        days = weeks.setdefault(week_start(day), [0] * 7)
        days[(day.weekday() + 1) % 7] += tokens
    latest = sorted(weeks)[-count:] if count > 0 else []
    return [
        WeekSummary(
            week_start=start.isoformat(),
            daily_tokens=tuple(weeks[start]),
            total_tokens=sum(weeks[start]),
        )
        for start in latest
    ]


def current_series_window(period: Period, today: date) -> Optional[DateWindow]:
    """Window plotted against the comparison window.

    ``all`` is compared as this year against last year.
    """
    if period is Period.ALL:
        return period_window(Period.YEAR, today)
    return period_window(period, today)


class AggregationEngine:
    """Folds log entries into buckets and period summaries.

    Configuration is passed in explicitly; the engine holds no data between
    calls, so repeated calls over the same entries give identical results.
    """

    def __init__(
        self,
        resolver: TimezoneResolver,
        exchange_rate: float,
        rates: EstimateRates = DEFAULT_RATES,
    ):
        if exchange_rate <= 0:
            raise ValueError("exchange_rate must be > 0")
        self.resolver = resolver
        self.exchange_rate = exchange_rate
        self.rates = rates

    def _resolve(self, entries: Iterable[LogEntry]) -> List[Tuple[LogEntry, datetime]]:
        resolved = []
        for entry in entries:
            local = self.resolver.local_datetime(entry.timestamp)
            if local is not None:
                resolved.append((entry, local))
        return resolved

    def _finish(self, buckets: Dict[BucketKey, Bucket]) -> Dict[BucketKey, Bucket]:
        ordered = {}
        for key in sorted(buckets):
            bucket = buckets[key]
            bucket.cost_local = usd_to_local(bucket.cost_usd, self.exchange_rate)
            ordered[key] = bucket
        return ordered

    def _fold(self, resolved: Sequence[Tuple[LogEntry, datetime]], granularity: Granularity) -> Dict[BucketKey, Bucket]:
        buckets: Dict[BucketKey, Bucket] = {}
        for entry, local in resolved:
            hour = None
            if granularity is Granularity.HOURLY:
                key: BucketKey = local.hour
            elif granularity is Granularity.DAILY:
                key = local.date().isoformat()
                hour = local.hour
            elif granularity is Granularity.WEEKLY:
                key = week_start(local.date()).isoformat()
            else:
                key = f"{local.year:04d}-{local.month:02d}"
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = Bucket(key)
            bucket.add(entry, hour)
        return self._finish(buckets)

    def aggregate(self, entries: Iterable[LogEntry], granularity: Granularity) -> Dict[BucketKey, Bucket]:
        """Fold entries into buckets of the given granularity.

        Keys are local hours (0-23), ``YYYY-MM-DD`` dates, the ``YYYY-MM-DD``
        Sunday starting each week, or ``YYYY-MM`` months. Buckets are
        returned in ascending key order and only exist where data exists.
        """
        return self._fold(self._resolve(entries), granularity)

    def hourly_series(self, entries: Iterable[LogEntry]) -> List[Bucket]:
        """Twenty-four hourly buckets, zero-filled where there is no data."""
        buckets = self.aggregate(entries, Granularity.HOURLY)
        return [buckets.get(hour) or Bucket(hour) for hour in range(24)]

    def recent_weeks(self, entries: Iterable[LogEntry], count: int = RECENT_WEEKS) -> List[WeekSummary]:
        """Per-weekday tokens for the latest ``count`` weeks with data."""
        return weeks_from_days(
            ((local.date(), entry.total_tokens) for entry, local in self._resolve(entries)),
            count,
        )

    def by_project(self, entries: Iterable[LogEntry], limit: int = PROJECT_BREAKDOWN_LIMIT) -> List[ProjectBreakdown]:
        """Heaviest projects by tokens, then by name."""
        totals: Dict[str, Bucket] = {}
        for entry in entries:
            name = entry.project_name or "Unknown"
            totals.setdefault(name, Bucket(name)).add(entry)
        ranked = sorted(totals.values(), key=lambda b: (-b.total_tokens, b.key))
        return [
            ProjectBreakdown(name=b.key, total_tokens=b.total_tokens, cost_usd=b.cost_usd, entries=b.entries)
            for b in ranked[:limit]
        ]

    def filter_window(self, entries: Iterable[LogEntry], window: Optional[DateWindow]) -> List[LogEntry]:
        """Entries whose local date falls inside the window (all when None)."""
        if window is None:
            return list(entries)
        return [entry for entry, local in self._resolve(entries) if window.contains(local.date())]

    def _summarize_resolved(self, resolved: Sequence[Tuple[LogEntry, datetime]], period: Period) -> PeriodSummary:
        totals = Bucket("total")
        any_cost = False
        calls = 0
        hours: Set[int] = set()
        date_hours: Set[Tuple[date, int]] = set()
        days: Set[date] = set()
        projects: Set[str] = set()
        kinds: Dict[str, int] = defaultdict(int)

        for entry, local in resolved:
            totals.add(entry)
            if entry.cost_usd is not None:
                any_cost = True
            if entry.usage is not None:
                calls += 1
            hours.add(local.hour)
            date_hours.add((local.date(), local.hour))
            days.add(local.date())
            if entry.project_name:
                projects.add(entry.project_name)
            kinds[entry.kind] += 1

        active_hours = len(hours) if period is Period.TODAY else len(date_hours)
        return summarize_totals(
            period=period,
            totals=totals,
            any_cost=any_cost,
            calls=calls,
            active_hours=active_hours,
            active_days=len(days),
            project_count=len(projects),
            user_messages=kinds["user"],
            assistant_messages=kinds["assistant"],
            exchange_rate=self.exchange_rate,
            rates=self.rates,
        )

    def summarize(self, entries: Iterable[LogEntry], period: Union[str, Period] = Period.ALL) -> PeriodSummary:
        """Roll entries up into one PeriodSummary.

        Entries are not filtered here; pass only the entries of the period.
        The period decides how active hours are counted.
        """
        return self._summarize_resolved(self._resolve(entries), parse_period(period))

    def build_chart(
        self,
        entries: Iterable[LogEntry],
        period: Union[str, Period],
        today: Union[date, datetime],
    ) -> ChartData:
        """Compute the full chart shape for a period.

        Args:
            entries: Every entry available, unfiltered
            period: Requested period
            today: Current local date

        Returns:
            ChartData for the period
        """
        period = parse_period(period)
        if isinstance(today, datetime):
            today = today.date()

        resolved = self._resolve(entries)
        range_days = len({local.date() for _, local in resolved})
        granularity = select_granularity(period, range_days)

        window = period_window(period, today)
        current = [r for r in resolved if window is None or window.contains(r[1].date())]
        current_entries = [entry for entry, _ in current]

        if granularity is Granularity.HOURLY:
            folded = self._fold(current, granularity)
            buckets = [folded.get(hour) or Bucket(hour) for hour in range(24)]
        else:
            buckets = list(self._fold(current, granularity).values())

        hourly = [0] * 24
        for entry, local in current:
            hourly[local.hour] += entry.total_tokens

        comparison = None
        previous_window = comparison_window(period, today)
        if previous_window is not None:
            series_window = current_series_window(period, today)
            comparison = comparison_series(
                period,
                granularity,
                (
                    (local.date(), local.hour, entry.total_tokens)
                    for entry, local in resolved
                    if series_window is None or series_window.contains(local.date())
                ),
                (
                    (local.date(), local.hour, entry.total_tokens)
                    for entry, local in resolved
                    if previous_window.contains(local.date())
                ),
                previous_window,
            )

        weekly: List[WeekSummary] = []
        if granularity is Granularity.DAILY:
            weekly = weeks_from_days((local.date(), entry.total_tokens) for entry, local in current)

        return ChartData(
            period=period.value,
            granularity=granularity,
            buckets=tuple(buckets),
            labels=tuple(bucket_label(granularity, b.key) for b in buckets),
            hourly_tokens=tuple(hourly),
            project_breakdown=tuple(self.by_project(current_entries)),
            comparison=comparison,
            weekly=tuple(weekly),
            summary=self._summarize_resolved(current, period),
        )
