"""Pydantic response models for the health and readiness endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Response body for ``GET /healthz``."""

    status: str = Field(
        ...,
        description="``ok`` while the watch loop and the elector are running, else ``unhealthy``.",
        examples=["ok", "unhealthy"],
    )
    version: str = Field(..., description="hahaha version string.", examples=["0.1.0"])


class ReadinessStatus(BaseModel):
    """Response body for ``GET /readyz``.

    The replica is ready only when it holds the Lease and its cache has synced.
    """

    ready: bool
    leader: bool
    cache_synced: bool
    cache_state: str = Field(..., examples=["warming", "ready", "resyncing"])
    cached_resources: int = Field(..., ge=0)
    queue_depth: int = Field(..., ge=0)
    in_flight: int = Field(..., ge=0)
    identity: str
