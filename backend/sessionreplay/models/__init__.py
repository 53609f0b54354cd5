"""Session and event record models."""
from sessionreplay.models.event import EventRecord, EventType, parse_event, validate
from sessionreplay.models.session import Session, SessionMetadata, SessionSummary, Viewport, summarize

__all__ = [
    "EventRecord",
    "EventType",
    "parse_event",
    "validate",
    "Session",
    "SessionMetadata",
    "SessionSummary",
    "Viewport",
    "summarize",
]
