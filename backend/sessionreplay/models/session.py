"""Session document models."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sessionreplay.constants import SESSION_SCHEMA_VERSION, SessionStatus


class Viewport(BaseModel):
    """Client viewport size in CSS pixels."""
    width: int
    height: int


class SessionMetadata(BaseModel):
    """Session metadata; unknown client keys are kept as-is."""
    model_config = ConfigDict(extra="allow")

    url: Optional[str] = None
    userAgent: Optional[str] = None
    viewport: Optional[Viewport] = None
    timestamp: Optional[int] = None
    recordedAt: Optional[int] = None
    lastUpdated: Optional[int] = None
    status: str = SessionStatus.RECORDING
    version: str = SESSION_SCHEMA_VERSION


class Session(BaseModel):
    """A recorded session: metadata plus the ordered event log."""
    sessionId: str
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    events: List[Dict[str, Any]] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        """The JSON document written to disk."""
        return self.model_dump(mode="json")


class SessionSummary(BaseModel):
    """Listing row for one stored session."""
    id: str
    url: Optional[str] = None
    timestamp: Optional[int] = None
    userAgent: Optional[str] = None
    status: str
    lastUpdated: Optional[int] = None
    recordedAt: Optional[int] = None
    eventCount: int


def summarize(session: Session) -> SessionSummary:
    """Reduce a session to its listing row."""
    meta = session.metadata
    return SessionSummary(
        id=session.sessionId,
        url=meta.url,
        timestamp=meta.timestamp if meta.timestamp is not None else meta.recordedAt,
        userAgent=meta.userAgent,
        status=meta.status,
        lastUpdated=meta.lastUpdated,
        recordedAt=meta.recordedAt,
        eventCount=len(session.events),
    )
