"""FastAPI server exposing the recruiting pipeline board and analytics."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional, TypeVar

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import AuthenticatedPrincipal, HeaderPrincipalResolver, PrincipalResolver, get_principal
from .bucketing import TimelinePeriod
from .config import PipelineConfig, load_config
from .errors import PipelineError, StoreError, StoreTimeout
from .funnel import FunnelAnalyticsService
from .repository import ApplicationRepository, build_repository
from .schemas import ApplicationCreate, ApplicationUpdate, StatusUpdate, field_errors
from .timeline import TimelineEngine
from .workflow import StatusWorkflow

load_dotenv()

logger = logging.getLogger(__name__)

R = TypeVar("R")


class PipelineServices:
    def __init__(self, repository: ApplicationRepository, config: PipelineConfig):
        self.repository = repository
        self.config = config
        self.workflow = StatusWorkflow(repository, config)
        self.funnel = FunnelAnalyticsService(repository, config)
        self.timeline = TimelineEngine(repository, config)


def _ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True}
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    return payload


def create_app(
    config: Optional[PipelineConfig] = None,
    repository: Optional[ApplicationRepository] = None,
    principal_resolver: Optional[PrincipalResolver] = None,
) -> FastAPI:
    cfg = config or load_config()

    @asynccontextmanager
    async def lifespan(target: FastAPI):
        if getattr(target.state, "services", None) is None:
            target.state.services = PipelineServices(build_repository(cfg), cfg)
            logger.info("Pipeline tracker connected to %s", cfg.database_url.split("@")[-1])
        yield

    app = FastAPI(title="Recruiting Pipeline Tracker API", version="0.1.0", lifespan=lifespan)
    app.state.config = cfg
    app.state.principal_resolver = principal_resolver or HeaderPrincipalResolver(cfg.principal_header)
    app.state.services = PipelineServices(repository, cfg) if repository is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def _pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        owner_id = getattr(request.state, "owner_id", None)
        if isinstance(exc, StoreError):
            logger.error("%s %s failed for owner=%s: %s", request.method, request.url.path, owner_id, exc.message)
        else:
            logger.info(
                "%s %s rejected for owner=%s (%s): %s",
                request.method,
                request.url.path,
                owner_id,
                exc.http_status,
                exc.message,
            )
        return JSONResponse(status_code=exc.http_status, content=exc.as_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = field_errors(exc)
        logger.info("%s %s validation failed: %s", request.method, request.url.path, errors)
        return JSONResponse(status_code=400, content={"success": False, "message": "Validation failed", "errors": errors})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "%s %s failed unexpectedly for owner=%s",
            request.method,
            request.url.path,
            getattr(request.state, "owner_id", None),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

    _register_routes(app)
    return app


def _services(request: Request) -> PipelineServices:
    return request.app.state.services


def _owner(request: Request, principal: AuthenticatedPrincipal = Depends(get_principal)) -> str:
    request.state.owner_id = principal.owner_id
    return principal.owner_id


async def _call(request: Request, operation: str, fn: Callable[..., R], *args: Any) -> R:
    """Run a blocking engine call off the event loop, bounded by the query timeout."""

    timeout = request.app.state.config.query_timeout_seconds
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("%s exceeded %.1fs (owner=%s)", operation, timeout, getattr(request.state, "owner_id", None))
        raise StoreTimeout() from None


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    # -- applications ----------------------------------------------------

    @app.get("/api/applications")
    async def list_applications(
        request: Request,
        owner_id: str = Depends(_owner),
        status: Optional[str] = Query(None),
        role: Optional[str] = Query(None),
        experience_min: Optional[float] = Query(None, alias="experienceMin"),
        search: Optional[str] = Query(None),
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        sort_by: str = Query("createdAt", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder"),
    ) -> Dict[str, Any]:
        services = _services(request)
        params = {
            "status": status or None,
            "role": role,
            "experienceMin": experience_min,
            "search": search,
            "page": page,
            "limit": limit if limit is not None else services.config.default_page_size,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        result = await _call(request, "list_applications", services.workflow.list_applications, owner_id, params)
        return _ok(result.as_dict())

    @app.post("/api/applications", status_code=201)
    async def create_application(
        payload: ApplicationCreate, request: Request, owner_id: str = Depends(_owner)
    ) -> Dict[str, Any]:
        services = _services(request)
        application = await _call(request, "create_application", services.workflow.create_application, owner_id, payload)
        return _ok({"application": application.as_dict()}, "Application created successfully")

    @app.get("/api/applications/{application_id}")
    async def get_application(application_id: str, request: Request, owner_id: str = Depends(_owner)) -> Dict[str, Any]:
        services = _services(request)
        application = await _call(request, "get_application", services.workflow.get_application, owner_id, application_id)
        return _ok({"application": application.as_dict()})

    @app.put("/api/applications/{application_id}")
    async def update_application(
        application_id: str, payload: ApplicationUpdate, request: Request, owner_id: str = Depends(_owner)
    ) -> Dict[str, Any]:
        services = _services(request)
        application = await _call(
            request, "update_application", services.workflow.update_application, owner_id, application_id, payload
        )
        return _ok({"application": application.as_dict()}, "Application updated successfully")

    @app.patch("/api/applications/{application_id}/status")
    async def update_status(
        application_id: str, payload: StatusUpdate, request: Request, owner_id: str = Depends(_owner)
    ) -> Dict[str, Any]:
        services = _services(request)
        application = await _call(
            request, "set_status", services.workflow.set_status, owner_id, application_id, payload.status
        )
        return _ok({"application": application.as_dict()}, "Application status updated successfully")

    @app.delete("/api/applications/{application_id}")
    async def delete_application(application_id: str, request: Request, owner_id: str = Depends(_owner)) -> Dict[str, Any]:
        services = _services(request)
        await _call(request, "delete_application", services.workflow.delete_application, owner_id, application_id)
        return _ok(message="Application deleted successfully")

    # -- analytics -------------------------------------------------------

    @app.get("/api/analytics/dashboard")
    async def dashboard(request: Request, owner_id: str = Depends(_owner)) -> Dict[str, Any]:
        services = _services(request)
        payload = await _call(request, "compute_dashboard", services.funnel.compute_dashboard, owner_id)
        data = payload.as_dict()
        data["refreshIntervalSeconds"] = services.config.poll_interval_seconds
        return _ok(data)

    @app.get("/api/analytics/timeline")
    async def timeline(
        request: Request,
        owner_id: str = Depends(_owner),
        period: str = Query("monthly"),
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
    ) -> Dict[str, Any]:
        services = _services(request)
        points = await _call(
            request, "compute_timeline", services.timeline.compute_timeline, owner_id, period, start_date, end_date
        )
        resolved = TimelinePeriod.parse(period).value
        return _ok({"timelineData": [point.as_dict() for point in points], "period": resolved})

    @app.get("/api/analytics/roles")
    async def role_analytics(
        request: Request, owner_id: str = Depends(_owner), role: Optional[str] = Query(None)
    ) -> Dict[str, Any]:
        services = _services(request)
        analytics = await _call(request, "role_analytics", services.funnel.role_analytics, owner_id, role)
        return _ok({"roleAnalytics": [item.as_dict() for item in analytics]})

    @app.get("/api/analytics/experience")
    async def experience(request: Request, owner_id: str = Depends(_owner)) -> Dict[str, Any]:
        services = _services(request)
        buckets = await _call(request, "experience_distribution", services.funnel.experience_distribution, owner_id)
        return _ok({"experienceDistribution": [bucket.as_dict(include_candidates=True) for bucket in buckets]})


app = create_app()


def main() -> None:
    cfg = app.state.config
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    uvicorn.run("backend.pipeline_tracker.server:app", host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
