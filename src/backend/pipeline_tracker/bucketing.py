from __future__ import annotations

from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import AggregationError, ValidationError

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

EXPERIENCE_BOUNDARIES: Sequence[float] = (0, 2, 5, 8, 12, 15, 20, 25, 30)
EXPERIENCE_OVERFLOW_LABEL = "30+"


class TimelinePeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Any) -> "TimelinePeriod":
        if value is None or value == "":
            return cls.MONTHLY
        try:
            return cls(str(value).lower())
        except ValueError:
            allowed = ", ".join(period.value for period in cls)
            raise ValidationError.for_field("period", f"period must be one of: {allowed}") from None


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def to_zone(dt: datetime, tz: ZoneInfo) -> datetime:
    """
    Convert a stored timestamp into ``tz``.

    Naive values are treated as UTC, which is how the store writes them.
    """

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


@dataclass(frozen=True)
class BucketRange:
    label: str
    lower: float
    upper: Optional[float]


class BucketSpec:
    """
    Numeric histogram boundaries.

    Bucket ``i`` covers ``[boundaries[i], boundaries[i + 1])``. Anything
    outside ``[boundaries[0], boundaries[-1])`` lands in the default bucket.
    """

    def __init__(self, boundaries: Sequence[float], default_label: str):
        if len(boundaries) < 2:
            raise AggregationError("bucket boundaries need at least two values")
        if any(later <= earlier for earlier, later in zip(boundaries, boundaries[1:])):
            raise AggregationError("bucket boundaries must be strictly ascending")
        self.boundaries = tuple(boundaries)
        self.default_label = default_label

    @property
    def ranges(self) -> List[BucketRange]:
        ranges = [
            BucketRange(label=f"{_format_bound(lower)}-{_format_bound(upper)}", lower=lower, upper=upper)
            for lower, upper in zip(self.boundaries, self.boundaries[1:])
        ]
        ranges.append(BucketRange(label=self.default_label, lower=self.boundaries[-1], upper=None))
        return ranges

    def index_of(self, value: float) -> int:
        if value < self.boundaries[0] or value >= self.boundaries[-1]:
            return len(self.boundaries) - 1
        return bisect_right(self.boundaries, value) - 1

    def label_for(self, value: float) -> str:
        return self.ranges[self.index_of(value)].label

    def histogram(self, items: Iterable[T], value_of: Callable[[T], float]) -> List[Tuple[BucketRange, List[T]]]:
        """Place every item into its bucket; every bucket is returned, empty or not."""

        slots: List[List[T]] = [[] for _ in range(len(self.boundaries))]
        for item in items:
            slots[self.index_of(value_of(item))].append(item)
        return list(zip(self.ranges, slots))


EXPERIENCE_BUCKETS = BucketSpec(EXPERIENCE_BOUNDARIES, EXPERIENCE_OVERFLOW_LABEL)


@dataclass(frozen=True)
class PeriodKey:
    period: TimelinePeriod
    sort_key: Tuple[int, ...]
    fields: Tuple[Tuple[str, Any], ...]
    label: str

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.fields)


def period_key(moment: datetime, period: TimelinePeriod, tz: ZoneInfo) -> PeriodKey:
    local = to_zone(moment, tz)
    if period is TimelinePeriod.DAILY:
        day: date = local.date()
        iso_day = day.isoformat()
        return PeriodKey(period, (day.year, day.month, day.day), (("date", iso_day),), iso_day)
    if period is TimelinePeriod.WEEKLY:
        iso_year, iso_week, _ = local.isocalendar()
        return PeriodKey(
            period,
            (iso_year, iso_week),
            (("week", iso_week), ("year", iso_year)),
            f"{iso_year}-W{iso_week:02d}",
        )
    return PeriodKey(
        period,
        (local.year, local.month),
        (("month", local.month), ("year", local.year)),
        f"{local.year}-{local.month:02d}",
    )


def group_by(items: Iterable[T], key_fn: Callable[[T], K]) -> Dict[K, List[T]]:
    groups: Dict[K, List[T]] = defaultdict(list)
    for item in items:
        groups[key_fn(item)].append(item)
    return dict(groups)


class GroupedItems(Generic[K, T]):
    """Ordered view over a ``group_by`` result."""

    def __init__(self, groups: Dict[K, List[T]]):
        self.groups = groups

    def by_key(self, sort_key: Callable[[K], Any] = lambda key: key) -> List[Tuple[K, List[T]]]:
        return sorted(self.groups.items(), key=lambda item: sort_key(item[0]))

    def by_size(self, tiebreak: Callable[[K], Any] = lambda key: key) -> List[Tuple[K, List[T]]]:
        return sorted(self.groups.items(), key=lambda item: (-len(item[1]), tiebreak(item[0])))


GROUPABLE_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "status": lambda record: record.status.value,
    "role": lambda record: record.role,
}
AGGREGATE_METRICS = ("count", "avg_experience", "min_experience", "max_experience")


def validate_group_spec(group_field: Optional[str], metrics: Sequence[str]) -> None:
    if group_field is not None and group_field not in GROUPABLE_FIELDS:
        raise AggregationError(f"cannot group applications by {group_field!r}")
    unknown = [metric for metric in metrics if metric not in AGGREGATE_METRICS]
    if unknown or not metrics:
        raise AggregationError(f"unsupported aggregate metrics: {unknown or 'none requested'}")


def aggregate_records(
    records: Iterable[Any],
    group_field: Optional[str],
    metrics: Sequence[str] = ("count",),
) -> List[Dict[str, Any]]:
    """
    In-memory counterpart of the store's grouped aggregate.

    Rows look like ``{"key": <group value or None>, "count": 3, ...}``. An
    empty input yields no rows, including for the ungrouped case.
    """

    validate_group_spec(group_field, metrics)
    key_fn = GROUPABLE_FIELDS[group_field] if group_field else (lambda record: None)
    rows: List[Dict[str, Any]] = []
    for key, items in group_by(records, key_fn).items():
        experience = [float(item.years_of_experience) for item in items]
        row: Dict[str, Any] = {"key": key}
        for metric in metrics:
            if metric == "count":
                row[metric] = len(items)
            elif metric == "avg_experience":
                row[metric] = sum(experience) / len(experience)
            elif metric == "min_experience":
                row[metric] = min(experience)
            else:
                row[metric] = max(experience)
        rows.append(row)
    return rows
