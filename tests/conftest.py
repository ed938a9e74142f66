"""
Shared fixtures for the pipeline tracker tests.

Repository-backed tests run against an in-memory SQLite database shared
across threads (``StaticPool``) so the HTTP layer can hand queries to worker
threads. Pure engine tests build ``Application`` lists with ``make_application``.
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backend.pipeline_tracker.config import PipelineConfig
from backend.pipeline_tracker.models import Application, ApplicationStatus
from backend.pipeline_tracker.repository import SQLApplicationRepository
from backend.pipeline_tracker.workflow import StatusWorkflow

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns a strictly increasing UTC time on every call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


_ids = count(1)


def build_application(
    owner_id: str = "owner-a",
    candidate_name: str = "Ada Lovelace",
    role: str = "Backend Engineer",
    years_of_experience: float = 3,
    status: ApplicationStatus = ApplicationStatus.APPLIED,
    created_at: datetime = BASE_TIME,
    notes: str = "",
    application_id: str = None,
) -> Application:
    return Application(
        id=application_id or f"app-{next(_ids):04d}",
        owner_id=owner_id,
        candidate_name=candidate_name,
        role=role,
        years_of_experience=years_of_experience,
        status=ApplicationStatus(status),
        created_at=created_at,
        last_updated=created_at,
        updated_at=created_at,
        notes=notes,
    )


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_application():
    return build_application


@pytest.fixture
def config():
    return PipelineConfig(database_url="sqlite://", query_timeout_seconds=5.0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return SQLApplicationRepository(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workflow(repository, config, clock):
    return StatusWorkflow(repository, config, clock=clock)


@pytest.fixture
def seed(repository):
    """Insert applications straight into the store and return them."""

    def _seed(*applications):
        for application in applications:
            repository.insert(application)
        return list(applications)

    return _seed


@pytest.fixture
def funnel_scenario(seed):
    """Owner A: 5 applied, 3 interview, 1 offer, 1 rejected. Owner B: 2 offers."""

    statuses = (
        [ApplicationStatus.APPLIED] * 5
        + [ApplicationStatus.INTERVIEW] * 3
        + [ApplicationStatus.OFFER, ApplicationStatus.REJECTED]
    )
    owner_a = [
        build_application(
            owner_id="owner-a",
            candidate_name=f"Candidate {index}",
            role="Backend Engineer" if index % 2 else "Data Analyst",
            years_of_experience=index * 3,
            status=status,
            created_at=BASE_TIME + timedelta(days=index),
        )
        for index, status in enumerate(statuses)
    ]
    owner_b = [
        build_application(owner_id="owner-b", candidate_name=f"Other {index}", status=ApplicationStatus.OFFER)
        for index in range(2)
    ]
    seed(*owner_a, *owner_b)
    return owner_a, owner_b
