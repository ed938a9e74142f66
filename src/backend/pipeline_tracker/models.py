from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ApplicationStatus(str, Enum):
    """
    Stage of an application on the recruiter board.

    Members compare equal to their plain string value so rows coming back from
    the store and query parameters can be matched without conversion.
    """

    APPLIED = "applied"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def values(cls) -> List[str]:
        return [status.value for status in cls]


STATUS_ORDER: Sequence[ApplicationStatus] = tuple(ApplicationStatus)

SORTABLE_FIELDS = {
    "candidateName": "candidate_name",
    "role": "role",
    "yearsOfExperience": "years_of_experience",
    "status": "status",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "lastUpdated": "last_updated",
}


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Application:
    """
    A candidate's application as persisted for one recruiter.

    ``created_at`` doubles as the applied date. ``last_updated`` only moves
    when the status is written, ``updated_at`` moves on every write.
    """

    id: str
    owner_id: str
    candidate_name: str
    role: str
    years_of_experience: float
    status: ApplicationStatus
    created_at: datetime
    last_updated: datetime
    updated_at: datetime
    resume_link: str = ""
    notes: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "candidateName": self.candidate_name,
            "role": self.role,
            "yearsOfExperience": self.years_of_experience,
            "resumeLink": self.resume_link,
            "status": self.status.value,
            "notes": self.notes,
            "createdAt": _isoformat(self.created_at),
            "lastUpdated": _isoformat(self.last_updated),
            "updatedAt": _isoformat(self.updated_at),
            "recruiter": self.owner_id,
        }


@dataclass(frozen=True)
class ApplicationQuery:
    """
    Filter predicates for listing applications.

    ``role`` and ``search`` are case-insensitive substring matches; ``search``
    is OR-ed across candidate name, role and notes.
    """

    status: Optional[ApplicationStatus] = None
    role: Optional[str] = None
    experience_min: Optional[float] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


@dataclass(frozen=True)
class Page:
    number: int = 1
    size: int = 20
    sort_by: str = "createdAt"
    descending: bool = True

    @property
    def skip(self) -> int:
        return (self.number - 1) * self.size


@dataclass(frozen=True)
class PageResult:
    items: Sequence[Application]
    total: int
    page: Page

    @property
    def total_pages(self) -> int:
        if self.page.size <= 0:
            return 0
        return -(-self.total // self.page.size)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "applications": [item.as_dict() for item in self.items],
            "pagination": {
                "currentPage": self.page.number,
                "totalPages": self.total_pages,
                "totalItems": self.total,
                "itemsPerPage": self.page.size,
            },
        }


@dataclass(frozen=True)
class StatusCount:
    status: ApplicationStatus
    count: int

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.status.display_name, "status": self.status.value, "count": self.count}


@dataclass(frozen=True)
class RoleCount:
    role: str
    count: int

    def as_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "count": self.count}


@dataclass(frozen=True)
class ExperienceStats:
    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    total_count: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "averageExperience": self.average,
            "minExperience": self.minimum,
            "maxExperience": self.maximum,
            "totalCandidates": self.total_count,
        }


@dataclass(frozen=True)
class ExperienceBucket:
    label: str
    lower_bound: float
    upper_bound: Optional[float]
    count: int
    candidates: Sequence[str] = field(default_factory=tuple)

    def as_dict(self, include_candidates: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "label": self.label,
            "lowerBound": self.lower_bound,
            "upperBound": self.upper_bound,
            "count": self.count,
        }
        if include_candidates:
            payload["candidates"] = list(self.candidates)
        return payload


@dataclass(frozen=True)
class PeriodCount:
    """Monthly application volume shown on the dashboard."""

    year: int
    month: int
    count: int

    def as_dict(self) -> Dict[str, Any]:
        return {"year": self.year, "month": self.month, "count": self.count}


def _status_counts_dict(counts: Dict[ApplicationStatus, int]) -> Dict[str, int]:
    return {status.value: counts.get(status, 0) for status in STATUS_ORDER}


@dataclass(frozen=True)
class TimelinePoint:
    """
    Applications created within one period.

    ``status_counts`` reflects the *current* status of records created in the
    period, not the status they had while the period was open.
    """

    key: Dict[str, Any]
    label: str
    total: int
    status_counts: Dict[ApplicationStatus, int]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "period": dict(self.key),
            "label": self.label,
            "totalApplications": self.total,
            "statusCounts": _status_counts_dict(self.status_counts),
        }


@dataclass(frozen=True)
class ConversionRates:
    applied_to_interview: float = 0.0
    interview_to_offer: float = 0.0
    offer_to_hire: float = 100.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "appliedToInterview": self.applied_to_interview,
            "interviewToOffer": self.interview_to_offer,
            "offerToHire": self.offer_to_hire,
        }


@dataclass(frozen=True)
class DashboardSummary:
    total_candidates: int = 0
    active_applications: int = 0
    successful_placements: int = 0
    rejection_rate: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalCandidates": self.total_candidates,
            "activeApplications": self.active_applications,
            "successfulPlacements": self.successful_placements,
            "rejectionRate": self.rejection_rate,
        }


@dataclass(frozen=True)
class RecentApplication:
    id: str
    candidate_name: str
    role: str
    status: ApplicationStatus
    created_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "candidateName": self.candidate_name,
            "role": self.role,
            "status": self.status.value,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class StatusTransition:
    status: ApplicationStatus
    count: int
    avg_experience: float

    def as_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "count": self.count, "avgExperience": self.avg_experience}


@dataclass(frozen=True)
class RoleAnalytics:
    role: str
    total_candidates: int
    avg_experience: float
    status_counts: Dict[ApplicationStatus, int]
    candidates: Sequence[Dict[str, Any]] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "totalCandidates": self.total_candidates,
            "avgExperience": self.avg_experience,
            "statusCounts": _status_counts_dict(self.status_counts),
            "candidates": list(self.candidates),
        }


@dataclass(frozen=True)
class DashboardPayload:
    status_counts: Sequence[StatusCount]
    role_counts: Sequence[RoleCount]
    experience_stats: ExperienceStats
    experience_distribution: Sequence[ExperienceBucket]
    conversion_rates: ConversionRates
    summary: DashboardSummary
    monthly_applications: Sequence[PeriodCount] = field(default_factory=tuple)
    recent_applications: Sequence[RecentApplication] = field(default_factory=tuple)
    status_transitions: Sequence[StatusTransition] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into the JSON structure the dashboard
        page renders.
        """

        return {
            "statusCounts": [item.as_dict() for item in self.status_counts],
            "roleCounts": [item.as_dict() for item in self.role_counts],
            "experienceStats": self.experience_stats.as_dict(),
            "experienceDistribution": [item.as_dict() for item in self.experience_distribution],
            "conversionRates": self.conversion_rates.as_dict(),
            "summary": self.summary.as_dict(),
            "monthlyApplications": [item.as_dict() for item in self.monthly_applications],
            "recentApplications": [item.as_dict() for item in self.recent_applications],
            "statusTransitions": [item.as_dict() for item in self.status_transitions],
        }
