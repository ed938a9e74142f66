"""
Request payloads accepted by the application and analytics endpoints.

Fields are exposed under their camelCase wire names; the Python names match
the store columns so validated payloads can be handed to the repository as is.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import SORTABLE_FIELDS, ApplicationStatus


def _clean_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _require_text(value: Optional[str]) -> Optional[str]:
    if value is not None and not value:
        raise ValueError("must not be empty")
    return value


def _check_resume_link(value: Optional[str]) -> str:
    if not value:
        return ""
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("must be an http(s) URL")
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ApplicationCreate(_WireModel):
    candidate_name: str = Field(..., alias="candidateName", max_length=255)
    role: str = Field(..., max_length=255)
    years_of_experience: float = Field(..., alias="yearsOfExperience", ge=0, le=50)
    resume_link: Optional[str] = Field("", alias="resumeLink", max_length=2048)
    notes: Optional[str] = ""
    status: ApplicationStatus = ApplicationStatus.APPLIED

    strip_text = field_validator("candidate_name", "role", "resume_link", "notes", mode="before")(_clean_text)

    @field_validator("candidate_name", "role")
    @classmethod
    def non_empty(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("resume_link")
    @classmethod
    def valid_resume_link(cls, value: Optional[str]) -> str:
        return _check_resume_link(value)

    @field_validator("notes")
    @classmethod
    def default_notes(cls, value: Optional[str]) -> str:
        return value or ""


class ApplicationUpdate(_WireModel):
    """Sparse patch: only fields present in the request are applied."""

    candidate_name: Optional[str] = Field(None, alias="candidateName", max_length=255)
    role: Optional[str] = Field(None, max_length=255)
    years_of_experience: Optional[float] = Field(None, alias="yearsOfExperience", ge=0, le=50)
    resume_link: Optional[str] = Field(None, alias="resumeLink", max_length=2048)
    notes: Optional[str] = None
    status: Optional[ApplicationStatus] = None

    strip_text = field_validator("candidate_name", "role", "resume_link", "notes", mode="before")(_clean_text)

    @field_validator("candidate_name", "role")
    @classmethod
    def non_empty(cls, value: Optional[str]) -> Optional[str]:
        return _require_text(value)

    @field_validator("resume_link")
    @classmethod
    def valid_resume_link(cls, value: Optional[str]) -> str:
        return _check_resume_link(value)

    def changes(self) -> Dict[str, Any]:
        provided = self.model_dump(include=self.model_fields_set)
        for required in ("candidate_name", "role", "years_of_experience", "status"):
            if required in provided and provided[required] is None:
                raise ValidationError.for_field(_wire_name(required), "must not be null")
        if "notes" in provided and provided["notes"] is None:
            provided["notes"] = ""
        if "status" in provided:
            provided["status"] = ApplicationStatus(provided["status"])
        return provided


class StatusUpdate(_WireModel):
    status: ApplicationStatus


class ApplicationListParams(_WireModel):
    status: Optional[ApplicationStatus] = None
    role: Optional[str] = None
    experience_min: Optional[float] = Field(None, alias="experienceMin", ge=0)
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1)
    sort_by: str = Field("createdAt", alias="sortBy")
    sort_order: Literal["asc", "desc"] = Field("desc", alias="sortOrder")

    strip_text = field_validator("role", "search", mode="before")(_clean_text)

    @field_validator("sort_by")
    @classmethod
    def sortable(cls, value: str) -> str:
        if value not in SORTABLE_FIELDS:
            raise ValueError(f"must be one of: {', '.join(sorted(SORTABLE_FIELDS))}")
        return value


def _wire_name(field_name: str) -> str:
    head, *rest = field_name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def field_errors(exc: Any) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        errors.append({"field": ".".join(location) or "body", "message": error.get("msg", "invalid value")})
    return errors


def parse_model(model: type, payload: Any) -> Any:
    """Validate ``payload`` into ``model``, raising the service ``ValidationError``."""

    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as exc:
        raise ValidationError(errors=field_errors(exc)) from None
