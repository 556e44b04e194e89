"""
Health check schemas.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(description="Overall health status: ok | degraded")
    timestamp: str = Field(description="ISO 8601 timestamp")
    services: dict[str, str] = Field(description="Individual service statuses")
    version: str = Field(default="0.1.0", description="Application version")
