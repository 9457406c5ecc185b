"""Health check schemas."""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    store: str
    rate_limiter: Dict[str, Any] = {}
    scheduler: Optional[Dict[str, Any]] = None
