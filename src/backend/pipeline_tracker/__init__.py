"""
Recruiting pipeline tracker.

Tracks applications through the applied / interview / offer / rejected
stages for each recruiter and turns their records into the dashboard,
timeline, role and experience breakdowns shown on the analytics pages.
"""

from .bucketing import (  # noqa: F401
    EXPERIENCE_BUCKETS,
    BucketSpec,
    TimelinePeriod,
    aggregate_records,
    group_by,
    period_key,
)
from .config import PipelineConfig, load_config  # noqa: F401
from .errors import (  # noqa: F401
    AggregationError,
    ForbiddenError,
    NotFoundError,
    PipelineError,
    StoreError,
    StoreTimeout,
    UnauthorizedError,
    ValidationError,
)
from .funnel import FunnelAnalyticsService  # noqa: F401
from .models import (  # noqa: F401
    Application,
    ApplicationQuery,
    ApplicationStatus,
    ConversionRates,
    DashboardPayload,
    DashboardSummary,
    ExperienceBucket,
    ExperienceStats,
    Page,
    PageResult,
    RoleAnalytics,
    RoleCount,
    StatusCount,
    TimelinePoint,
)
from .polling import DashboardPoller, OptimisticBoard  # noqa: F401
from .repository import (  # noqa: F401
    ApplicationRepository,
    SQLApplicationRepository,
    build_repository,
    create_pipeline_engine,
)
from .timeline import TimelineEngine  # noqa: F401
from .workflow import StatusWorkflow  # noqa: F401
