"""Common response models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Machine-readable error code")
    request_id: Optional[str] = Field(None, description="Request ID for tracking")
    details: Optional[Dict[str, Any]] = Field(
        None, description="Additional error details"
    )


class ApiInfo(BaseModel):
    """Service metadata returned by the API index."""

    name: str
    version: str
    environment: str
    endpoints: Dict[str, str]
