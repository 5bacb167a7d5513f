"""Health and error envelopes shared by every route."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness probe body."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_now)
    version: str = Field(default="0.1.0", description="API version")


class CheckResult(BaseModel):
    """One readiness dependency: the document store or the expiration sweeper."""

    name: str
    healthy: bool
    latency_ms: float | None = Field(default=None, description="Round trip of the check in milliseconds")
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness probe body. Unhealthy if any check failed."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_now)
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Structured cause of an error: offending field, missing resource or rejected transition."""

    loc: list[str] | None = Field(default=None, description="Field path or resource the error refers to")
    msg: str
    type: str = Field(description="e.g. value_error, not_found, insufficient_stock, invalid_transition")


class ErrorResponse(BaseModel):
    """Error body returned for every failed request.

    ``error`` is the engine error kind (``not_found``, ``validation_error``,
    ``external_provider_error``, ``persistence_error``, ``conflict``) or
    ``http_error``/``internal_error`` for failures outside the engine.
    """

    error: str
    message: str
    details: list[ErrorDetail] | None = None
    request_id: str | None = Field(default=None, description="X-Request-ID of the failed request")
    timestamp: datetime = Field(default_factory=_now)

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        """Build the envelope from an error kind and the error's detail dicts."""
        return cls(
            error=error_type,
            message=message,
            details=[
                ErrorDetail(
                    loc=[str(part) for part in d["loc"]] if d.get("loc") else None,
                    msg=d.get("msg", str(d)),
                    type=d.get("type", "error"),
                )
                for d in details
            ]
            if details
            else None,
            request_id=request_id,
        )
