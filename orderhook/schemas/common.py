from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict


class BaseResponse(BaseModel):
    """Base response schema with consistent structure."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseResponse):
    """Standard error response."""

    success: bool = False
    error: str
    details: Optional[Dict[str, Any]] = None
