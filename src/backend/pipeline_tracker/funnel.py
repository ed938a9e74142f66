from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from .bucketing import (
    EXPERIENCE_BUCKETS,
    BucketSpec,
    GroupedItems,
    TimelinePeriod,
    coerce_timezone,
    group_by,
    period_key,
)
from .config import PipelineConfig
from .models import (
    STATUS_ORDER,
    Application,
    ApplicationQuery,
    ApplicationStatus,
    ConversionRates,
    DashboardPayload,
    DashboardSummary,
    ExperienceBucket,
    ExperienceStats,
    Page,
    PeriodCount,
    RecentApplication,
    RoleAnalytics,
    RoleCount,
    StatusCount,
    StatusTransition,
)
from .repository import ApplicationRepository

logger = logging.getLogger(__name__)


def round_one(value: float) -> float:
    """Round to one decimal with ties going up, on the exact binary value of ``value``."""

    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def percentage(numerator: float, denominator: float) -> float:
    """``numerator / denominator`` as a percentage rounded to one decimal; 0 without a denominator."""

    if not denominator:
        return 0.0
    return round_one(numerator / denominator * 100)


def status_totals(groups: Iterable[Mapping[str, Any]]) -> Dict[ApplicationStatus, int]:
    totals = {status: 0 for status in STATUS_ORDER}
    for group in groups:
        totals[ApplicationStatus(group["key"])] += int(group["count"])
    return totals


def build_status_counts(totals: Mapping[ApplicationStatus, int]) -> List[StatusCount]:
    return [StatusCount(status=status, count=totals.get(status, 0)) for status in STATUS_ORDER]


def build_role_counts(groups: Iterable[Mapping[str, Any]], limit: int = 10) -> List[RoleCount]:
    ordered = sorted(groups, key=lambda group: (-int(group["count"]), str(group["key"])))
    return [RoleCount(role=str(group["key"]), count=int(group["count"])) for group in ordered[:limit]]


def build_experience_stats(groups: Sequence[Mapping[str, Any]]) -> ExperienceStats:
    if not groups or not groups[0].get("count"):
        return ExperienceStats()
    row = groups[0]
    return ExperienceStats(
        average=round_one(float(row["avg_experience"])),
        minimum=float(row["min_experience"]),
        maximum=float(row["max_experience"]),
        total_count=int(row["count"]),
    )


def build_conversion_rates(totals: Mapping[ApplicationStatus, int]) -> ConversionRates:
    applied = totals.get(ApplicationStatus.APPLIED, 0)
    interview = totals.get(ApplicationStatus.INTERVIEW, 0)
    offer = totals.get(ApplicationStatus.OFFER, 0)
    return ConversionRates(
        applied_to_interview=percentage(interview, applied),
        interview_to_offer=percentage(offer, interview),
        # There is no accepted/hired stage, so this is 100 by convention.
        offer_to_hire=percentage(offer, offer) if offer else 100.0,
    )


def build_summary(totals: Mapping[ApplicationStatus, int], total_candidates: int) -> DashboardSummary:
    applied = totals.get(ApplicationStatus.APPLIED, 0)
    return DashboardSummary(
        total_candidates=total_candidates,
        active_applications=applied + totals.get(ApplicationStatus.INTERVIEW, 0),
        successful_placements=totals.get(ApplicationStatus.OFFER, 0),
        # Denominator is the applied count, not the total.
        rejection_rate=percentage(totals.get(ApplicationStatus.REJECTED, 0), applied),
    )


def build_status_transitions(groups: Iterable[Mapping[str, Any]]) -> List[StatusTransition]:
    transitions = [
        StatusTransition(
            status=ApplicationStatus(group["key"]),
            count=int(group["count"]),
            avg_experience=round_one(float(group.get("avg_experience") or 0.0)),
        )
        for group in groups
    ]
    order = {status: index for index, status in enumerate(STATUS_ORDER)}
    return sorted(transitions, key=lambda item: (-item.count, order[item.status]))


def build_experience_distribution(
    records: Iterable[Application],
    sample_size: Optional[int] = 0,
    spec: BucketSpec = EXPERIENCE_BUCKETS,
) -> List[ExperienceBucket]:
    """
    Histogram years of experience into the fixed buckets.

    ``sample_size`` caps the candidate names kept per bucket; ``None`` keeps
    all of them and ``0`` keeps none.
    """

    buckets: List[ExperienceBucket] = []
    for bucket_range, members in spec.histogram(records, lambda record: record.years_of_experience):
        names = [member.candidate_name for member in members]
        if sample_size is not None:
            names = names[:sample_size]
        buckets.append(
            ExperienceBucket(
                label=bucket_range.label,
                lower_bound=bucket_range.lower,
                upper_bound=bucket_range.upper,
                count=len(members),
                candidates=tuple(names),
            )
        )
    return buckets


def build_monthly_applications(records: Iterable[Application], tz: ZoneInfo, window: int = 12) -> List[PeriodCount]:
    """Per-month creation counts for the most recent ``window`` months that have data."""

    grouped = GroupedItems(group_by(records, lambda record: period_key(record.created_at, TimelinePeriod.MONTHLY, tz)))
    ordered = grouped.by_key(lambda key: key.sort_key)
    if window > 0:
        ordered = ordered[-window:]
    return [PeriodCount(year=key.sort_key[0], month=key.sort_key[1], count=len(items)) for key, items in ordered]


def build_recent_applications(records: Iterable[Application]) -> List[RecentApplication]:
    return [
        RecentApplication(
            id=record.id,
            candidate_name=record.candidate_name,
            role=record.role,
            status=record.status,
            created_at=record.created_at,
        )
        for record in records
    ]


def build_role_analytics(records: Iterable[Application]) -> List[RoleAnalytics]:
    grouped = GroupedItems(group_by(records, lambda record: record.role))
    analytics: List[RoleAnalytics] = []
    for role, members in grouped.by_size():
        counts = {status: 0 for status in STATUS_ORDER}
        for member in members:
            counts[member.status] += 1
        analytics.append(
            RoleAnalytics(
                role=role,
                total_candidates=len(members),
                avg_experience=round_one(sum(member.years_of_experience for member in members) / len(members)),
                status_counts=counts,
                candidates=tuple(
                    {
                        "candidateName": member.candidate_name,
                        "status": member.status.value,
                        "appliedDate": member.created_at.isoformat(),
                    }
                    for member in members
                ),
            )
        )
    return analytics


class FunnelAnalyticsService:
    """
    Builds the recruiter dashboard from owner-scoped grouped queries.

    Each section is an independent query against the repository, shaped by
    the pure ``build_*`` helpers above. Nothing is cached between calls, so
    concurrent polls are plain reads.
    """

    def __init__(self, repository: ApplicationRepository, config: Optional[PipelineConfig] = None) -> None:
        self.repository = repository
        self.config = config or PipelineConfig()
        self.tz = coerce_timezone(self.config.timezone)

    def compute_dashboard(self, owner_id: str) -> DashboardPayload:
        status_groups = self.repository.aggregate(owner_id, "status", ("count", "avg_experience"))
        role_groups = self.repository.aggregate(owner_id, "role", ("count",))
        experience_groups = self.repository.aggregate(
            owner_id, None, ("count", "avg_experience", "min_experience", "max_experience")
        )
        records = self.repository.load(owner_id)
        recent = self.repository.find(owner_id, ApplicationQuery(), Page(number=1, size=self.config.recent_limit))

        totals = status_totals(status_groups)
        experience_stats = build_experience_stats(experience_groups)
        payload = DashboardPayload(
            status_counts=build_status_counts(totals),
            role_counts=build_role_counts(role_groups, self.config.top_roles_limit),
            experience_stats=experience_stats,
            experience_distribution=build_experience_distribution(records),
            conversion_rates=build_conversion_rates(totals),
            summary=build_summary(totals, experience_stats.total_count),
            monthly_applications=build_monthly_applications(records, self.tz, self.config.monthly_window),
            recent_applications=build_recent_applications(recent.items),
            status_transitions=build_status_transitions(status_groups),
        )
        logger.debug("Dashboard computed for owner=%s (%d candidates)", owner_id, experience_stats.total_count)
        return payload

    def role_analytics(self, owner_id: str, role_filter: Optional[str] = None) -> List[RoleAnalytics]:
        records = self.repository.load(owner_id, ApplicationQuery(role=role_filter or None))
        return build_role_analytics(records)

    def experience_distribution(self, owner_id: str) -> List[ExperienceBucket]:
        records = self.repository.load(owner_id)
        return build_experience_distribution(records, sample_size=self.config.experience_sample_size)
