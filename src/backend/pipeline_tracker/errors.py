"""
Error taxonomy shared by the store adapter, the engines and the HTTP layer.

Each error knows the HTTP status it maps to so the server can render a
uniform ``{"success": false, "message": ...}`` envelope.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    http_status = 500
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def as_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(PipelineError):
    http_status = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    @classmethod
    def for_field(cls, field_name: str, message: str) -> "ValidationError":
        return cls(errors=[{"field": field_name, "message": message}])

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class NotFoundError(PipelineError):
    """Raised both for missing records and records owned by someone else."""

    http_status = 404
    default_message = "Application not found"


class UnauthorizedError(PipelineError):
    http_status = 401
    default_message = "Please log in to access this resource."


class ForbiddenError(PipelineError):
    http_status = 403
    default_message = "Access denied."


class StoreError(PipelineError):
    http_status = 500
    default_message = "Record store operation failed"


class StoreTimeout(StoreError):
    http_status = 503
    retryable = True
    default_message = "Record store did not respond in time; retry the request."

    def as_dict(self) -> Dict[str, Any]:
        payload = super().as_dict()
        payload["retryable"] = True
        return payload


class AggregationError(PipelineError):
    """A grouping spec referenced something the store cannot group by."""

    http_status = 500
    default_message = "Invalid aggregation"
