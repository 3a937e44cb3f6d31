"""
API Schemas: Request/Response Models

Transport models for the analysis endpoints. Field names on the wire are
camelCase, matching the domain models in ``core.models``.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import GatewayModel


class AnalyzeTextBody(GatewayModel):
    """Command: analyze a piece of text."""

    content: Any = Field(default=None, description="Text to analyze")
    options: Dict[str, Any] = Field(default_factory=dict, description="Analysis options")
    content_hash: Optional[str] = Field(default=None, description="Client-side content hash")
    request_id: Optional[str] = Field(default=None, description="Client-supplied request ID")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "content": "Their going to the libary tomorow.",
                "options": {
                    "includeGrammar": True,
                    "includeStyle": True,
                    "includeReadability": False,
                    "documentType": "email",
                },
            }
        }
    )


class HealthCheckResponse(BaseModel):
    """System health status."""

    status: str
    timestamp: datetime
    version: str
    dependencies: dict


class ErrorResponse(BaseModel):
    """Standardized error response for transport-level failures."""

    success: bool = False
    error: Dict[str, Any]
    request_id: Optional[str] = Field(default=None, alias="requestId")

    model_config = ConfigDict(populate_by_name=True)
