"""Schemas for session capture endpoints."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SessionSaveRequest(BaseModel):
    """Request schema for POST /api/sessions."""
    sessionId: str = Field(..., description="Session ID from SDK")
    # Shape is checked by the session store so bad batches surface as InvalidSessionData
    events: Any = Field(..., description="Array of captured events")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Metadata patch; isComplete ends recording")


class SessionSaveResponse(BaseModel):
    """Response schema for POST /api/sessions."""
    success: bool
    sessionId: str
    eventsReceived: int
    videoJobQueued: bool = False


class SessionCreateResponse(BaseModel):
    """Response schema for POST /api/sessions/new."""
    sessionId: str


class RecordingUploadResponse(BaseModel):
    """Response schema for PUT /api/sessions/{id}/recording."""
    success: bool
    sizeBytes: int
