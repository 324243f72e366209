"""Common schemas: health checks."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="Service version")
    engine_version: str = Field(..., description="Pine engine version")
    debug_mode: bool = Field(..., description="Whether runner debug mode is on")

