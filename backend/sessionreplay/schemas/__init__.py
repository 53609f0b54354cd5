"""Pydantic schemas for request/response validation."""
from sessionreplay.schemas.replay import ArtifactUrlResponse, ErrorDetail, ErrorResponse, error_responses
from sessionreplay.schemas.session import (
    RecordingUploadResponse,
    SessionCreateResponse,
    SessionSaveRequest,
    SessionSaveResponse,
)

__all__ = [
    "ArtifactUrlResponse",
    "ErrorDetail",
    "ErrorResponse",
    "RecordingUploadResponse",
    "SessionCreateResponse",
    "SessionSaveRequest",
    "SessionSaveResponse",
    "error_responses",
]
