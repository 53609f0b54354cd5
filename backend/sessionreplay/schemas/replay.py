"""Schemas for replay endpoints."""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ArtifactUrlResponse(BaseModel):
    """A servable URL for a derived artifact."""
    sessionId: str
    url: str


class ErrorDetail(BaseModel):
    """Body of every error response."""
    kind: str
    message: str
    retryAfter: Optional[int] = None


class ErrorResponse(BaseModel):
    """Error envelope as sent by FastAPI for ``HTTPException``."""
    detail: ErrorDetail


def error_responses(*status_codes: int) -> Dict[int, Dict[str, Any]]:
    """OpenAPI ``responses=`` entries documenting the error body."""
    descriptions = {
        400: "Invalid session data",
        404: "Session or artifact not found",
        500: "Storage or render failure",
        503: "Renderer unavailable or busy; see Retry-After",
    }
    return {code: {"model": ErrorResponse, "description": descriptions[code]} for code in status_codes}
