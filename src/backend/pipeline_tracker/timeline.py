from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Union
from zoneinfo import ZoneInfo

from .bucketing import GroupedItems, TimelinePeriod, coerce_timezone, group_by, period_key
from .config import PipelineConfig
from .errors import ValidationError
from .models import STATUS_ORDER, Application, ApplicationQuery, TimelinePoint
from .repository import ApplicationRepository

logger = logging.getLogger(__name__)

DateBound = Union[None, str, date, datetime]


def parse_bound(value: DateBound, field_name: str, tz: ZoneInfo, end_of_day: bool = False) -> Optional[datetime]:
    """
    Turn a query bound into an aware datetime.

    Date-only values expand to the start (or, for ``end_of_day``, the last
    microsecond) of that day in ``tz``. Naive datetimes are read in ``tz``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, str):
        raw = value.strip()
        try:
            if len(raw) == 10:
                value = date.fromisoformat(raw)
            else:
                value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError.for_field(field_name, f"{field_name} must be an ISO-8601 date") from None
    if isinstance(value, datetime):
        return value.replace(tzinfo=tz) if value.tzinfo is None else value
    start = datetime.combine(value, time.min, tzinfo=tz)
    if end_of_day:
        return start + timedelta(days=1) - timedelta(microseconds=1)
    return start


def build_timeline(records: Iterable[Application], period: TimelinePeriod, tz: ZoneInfo) -> List[TimelinePoint]:
    """
    One point per period key present in ``records``, ascending.

    Sub-counts use each record's current status. Periods without records are
    not filled in.
    """

    grouped = GroupedItems(group_by(records, lambda record: period_key(record.created_at, period, tz)))
    points: List[TimelinePoint] = []
    for key, members in grouped.by_key(lambda key: key.sort_key):
        counts = {status: 0 for status in STATUS_ORDER}
        for member in members:
            counts[member.status] += 1
        points.append(TimelinePoint(key=key.as_dict(), label=key.label, total=len(members), status_counts=counts))
    return points


class TimelineEngine:
    def __init__(self, repository: ApplicationRepository, config: Optional[PipelineConfig] = None) -> None:
        self.repository = repository
        self.config = config or PipelineConfig()
        self.tz = coerce_timezone(self.config.timezone)

    def compute_timeline(
        self,
        owner_id: str,
        period: Union[str, TimelinePeriod, None] = TimelinePeriod.MONTHLY,
        start_date: DateBound = None,
        end_date: DateBound = None,
    ) -> List[TimelinePoint]:
        resolved = period if isinstance(period, TimelinePeriod) else TimelinePeriod.parse(period)
        start = parse_bound(start_date, "startDate", self.tz)
        end = parse_bound(end_date, "endDate", self.tz, end_of_day=True)
        if start is not None and end is not None and start > end:
            raise ValidationError.for_field("endDate", "endDate must not be before startDate")

        records = self.repository.load(owner_id, ApplicationQuery(created_from=start, created_to=end))
        points = build_timeline(records, resolved, self.tz)
        logger.debug(
            "Timeline computed for owner=%s period=%s (%d points from %d records)",
            owner_id,
            resolved.value,
            len(points),
            len(records),
        )
        return points
