"""
Service configuration for the pipeline tracker.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel


class PipelineConfig(BaseModel):
    database_url: str = "sqlite:///./pipeline_tracker.db"
    echo_sql: bool = False

    query_timeout_seconds: float = 5.0
    """Upper bound for any single store call made on behalf of a request."""

    poll_interval_seconds: int = 30
    """Wall-clock refresh interval used by dashboard pollers."""

    timezone: str = "UTC"
    """Single zone used to derive period keys from ``createdAt``."""

    top_roles_limit: int = 10
    recent_limit: int = 5
    monthly_window: int = 12
    experience_sample_size: int = 10

    default_page_size: int = 20
    max_page_size: int = 100

    principal_header: str = "X-Recruiter-Id"
    log_level: str = "INFO"

    host: str = "127.0.0.1"
    port: int = 8000


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(base: Optional[PipelineConfig] = None) -> PipelineConfig:
    cfg = base or PipelineConfig()
    return PipelineConfig(
        database_url=os.getenv("PIPELINE_DATABASE_URL", cfg.database_url),
        echo_sql=_env_bool("PIPELINE_ECHO_SQL", cfg.echo_sql),
        query_timeout_seconds=_env_float("PIPELINE_QUERY_TIMEOUT_SECONDS", cfg.query_timeout_seconds),
        poll_interval_seconds=_env_int("PIPELINE_POLL_INTERVAL_SECONDS", cfg.poll_interval_seconds),
        timezone=os.getenv("PIPELINE_TIMEZONE", cfg.timezone),
        top_roles_limit=_env_int("PIPELINE_TOP_ROLES", cfg.top_roles_limit),
        recent_limit=_env_int("PIPELINE_RECENT_LIMIT", cfg.recent_limit),
        monthly_window=_env_int("PIPELINE_MONTHLY_WINDOW", cfg.monthly_window),
        experience_sample_size=_env_int("PIPELINE_EXPERIENCE_SAMPLE_SIZE", cfg.experience_sample_size),
        default_page_size=_env_int("PIPELINE_DEFAULT_PAGE_SIZE", cfg.default_page_size),
        max_page_size=_env_int("PIPELINE_MAX_PAGE_SIZE", cfg.max_page_size),
        principal_header=os.getenv("PIPELINE_PRINCIPAL_HEADER", cfg.principal_header),
        log_level=os.getenv("PIPELINE_LOG_LEVEL", cfg.log_level),
        host=os.getenv("PIPELINE_HOST", cfg.host),
        port=_env_int("PIPELINE_PORT", cfg.port),
    )
