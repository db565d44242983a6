from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResponseStatus(str, Enum):
    """Response status enumeration"""

    SUCCESS = "success"
    ERROR = "error"


class ApiResponse(BaseModel):
    """Standardized API response format (camelCase on the wire)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = Field(..., description="Whether the request was successful")
    status: ResponseStatus = Field(..., description="Response status")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Any] = Field(default=None, description="Response data")
    meta: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional metadata"
    )
    errors: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Error details"
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="Response timestamp",
    )
    request_id: Optional[str] = Field(
        default=None, description="Unique request identifier"
    )
    path: Optional[str] = Field(default=None, description="Request path")
