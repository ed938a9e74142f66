from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

from .config import PipelineConfig
from .errors import NotFoundError, ValidationError
from .models import Application, ApplicationQuery, ApplicationStatus, Page, PageResult
from .repository import ApplicationRepository
from .schemas import ApplicationCreate, ApplicationListParams, ApplicationUpdate, parse_model

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_status(value: Union[str, ApplicationStatus, None]) -> ApplicationStatus:
    """
    Validate a requested target stage.

    Any stage may move to any other stage, so the only check is membership
    in the status enum.
    """

    if isinstance(value, ApplicationStatus):
        return value
    try:
        return ApplicationStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(ApplicationStatus.values())
        raise ValidationError.for_field("status", f"status must be one of: {allowed} (got {value!r})") from None


class StatusWorkflow:
    """
    Owner-scoped application lifecycle: create, read, patch, move, delete.

    Status moves and patches are delegated to single atomic repository
    updates keyed by ``(id, owner_id)``; this class never reads a record in
    order to write it back.
    """

    def __init__(
        self,
        repository: ApplicationRepository,
        config: Optional[PipelineConfig] = None,
        clock: Clock = _utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.repository = repository
        self.config = config or PipelineConfig()
        self.clock = clock
        self.id_factory = id_factory

    def create_application(self, owner_id: str, payload: Union[Mapping[str, Any], ApplicationCreate]) -> Application:
        data: ApplicationCreate = parse_model(ApplicationCreate, payload)
        now = self.clock()
        application = Application(
            id=self.id_factory(),
            owner_id=owner_id,
            candidate_name=data.candidate_name,
            role=data.role,
            years_of_experience=data.years_of_experience,
            resume_link=data.resume_link or "",
            status=data.status,
            notes=data.notes or "",
            created_at=now,
            last_updated=now,
            updated_at=now,
        )
        self.repository.insert(application)
        logger.info("Created application %s for owner=%s (status=%s)", application.id, owner_id, application.status.value)
        return application

    def get_application(self, owner_id: str, application_id: str) -> Application:
        application = self.repository.get(owner_id, application_id)
        if application is None:
            raise NotFoundError()
        return application

    def list_applications(
        self, owner_id: str, params: Union[Mapping[str, Any], ApplicationListParams, None] = None
    ) -> PageResult:
        options: ApplicationListParams = parse_model(ApplicationListParams, params)
        if options.limit > self.config.max_page_size:
            raise ValidationError.for_field("limit", f"limit must be at most {self.config.max_page_size}")
        query = ApplicationQuery(
            status=options.status,
            role=options.role or None,
            experience_min=options.experience_min,
            search=options.search or None,
        )
        page = Page(
            number=options.page,
            size=options.limit,
            sort_by=options.sort_by,
            descending=options.sort_order == "desc",
        )
        return self.repository.find(owner_id, query, page)

    def set_status(
        self, owner_id: str, application_id: str, new_status: Union[str, ApplicationStatus, None]
    ) -> Application:
        status = parse_status(new_status)
        updated = self.repository.set_status(owner_id, application_id, status, self.clock())
        if updated is None:
            logger.info("Status change rejected: application %s not found for owner=%s", application_id, owner_id)
            raise NotFoundError()
        logger.info("Application %s moved to %s by owner=%s", application_id, status.value, owner_id)
        return updated

    def update_application(
        self, owner_id: str, application_id: str, patch: Union[Mapping[str, Any], ApplicationUpdate]
    ) -> Application:
        changes = parse_model(ApplicationUpdate, patch).changes()
        updated = self.repository.patch(owner_id, application_id, changes, self.clock())
        if updated is None:
            raise NotFoundError()
        logger.info("Application %s updated by owner=%s (fields=%s)", application_id, owner_id, sorted(changes))
        return updated

    def delete_application(self, owner_id: str, application_id: str) -> None:
        if not self.repository.delete(owner_id, application_id):
            raise NotFoundError()
        logger.info("Application %s deleted by owner=%s", application_id, owner_id)
