"""Event record models for captured browser interactions."""
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from sessionreplay.constants import REQUIRED_METADATA_KEYS
from sessionreplay.utils.exceptions import InvalidSessionData
from sessionreplay.utils.logger import logger


class EventType(str, Enum):
    """Closed set of event kinds the replay understands."""
    MOUSE_MOVE = "mouse_move"
    MOUSE_CLICK = "mouse_click"
    SCROLL = "scroll"
    INPUT = "input"
    VIEWPORT_RESIZE = "viewport_resize"
    DOM_MUTATION = "dom_mutation"
    NETWORK = "network"
    CONSOLE = "console"
    ERROR = "error"
    SNAPSHOT = "snapshot"
    CUSTOM = "custom"


# Names emitted by the browser SDK and older clients
EVENT_TYPE_ALIASES = {
    "mousemove": EventType.MOUSE_MOVE,
    "click": EventType.MOUSE_CLICK,
    "resize": EventType.VIEWPORT_RESIZE,
    "mutation": EventType.DOM_MUTATION,
    "dom": EventType.DOM_MUTATION,
}


class Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class PointerData(Payload):
    x: float
    y: float


class ScrollData(Payload):
    scrollX: float = Field(0, validation_alias=AliasChoices("scrollX", "x"))
    scrollY: float = Field(0, validation_alias=AliasChoices("scrollY", "y"))


class InputData(Payload):
    selector: Optional[str] = None
    id: Optional[str] = None
    value: Any = ""

    @model_validator(mode="after")
    def _needs_target(self):
        if not self.selector and not self.id:
            raise ValueError("input event needs a selector or an id")
        return self


class ViewportData(Payload):
    width: int
    height: int


class DomMutationData(Payload):
    """Either a full ``html`` replacement or a patch against ``target``."""
    html: Optional[str] = None
    target: Optional[str] = None
    addedNodes: List[Any] = Field(default_factory=list)
    removedNodes: List[Any] = Field(default_factory=list)


class SnapshotData(Payload):
    html: str


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: int = 0

    @property
    def kind(self) -> EventType:
        return EventType(self.type)


class MouseMoveEvent(_Record):
    type: Literal["mouse_move"]
    data: PointerData


class MouseClickEvent(_Record):
    type: Literal["mouse_click"]
    data: PointerData


class ScrollEvent(_Record):
    type: Literal["scroll"]
    data: ScrollData


class InputEvent(_Record):
    type: Literal["input"]
    data: InputData


class ViewportResizeEvent(_Record):
    type: Literal["viewport_resize"]
    data: ViewportData


class DomMutationEvent(_Record):
    type: Literal["dom_mutation"]
    data: DomMutationData


class SnapshotEvent(_Record):
    type: Literal["snapshot"]
    data: SnapshotData


class NetworkEvent(_Record):
    type: Literal["network"]
    data: Dict[str, Any] = Field(default_factory=dict)


class ConsoleEvent(_Record):
    type: Literal["console"]
    data: Dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(_Record):
    type: Literal["error"]
    data: Dict[str, Any] = Field(default_factory=dict)


class CustomEvent(_Record):
    type: Literal["custom"]
    data: Any = None


EventRecord = Annotated[
    Union[
        MouseMoveEvent,
        MouseClickEvent,
        ScrollEvent,
        InputEvent,
        ViewportResizeEvent,
        DomMutationEvent,
        SnapshotEvent,
        NetworkEvent,
        ConsoleEvent,
        ErrorEvent,
        CustomEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(EventRecord)


def normalize_event_type(raw_type: Any, data: Any = None) -> Optional[EventType]:
    """Map a wire type name onto ``EventType``; ``None`` if unknown."""
    if isinstance(raw_type, EventType):
        return raw_type
    if not isinstance(raw_type, str):
        return None
    if raw_type == "mouse":
        # legacy combined pointer event
        if isinstance(data, Mapping) and data.get("type") == "click":
            return EventType.MOUSE_CLICK
        return EventType.MOUSE_MOVE
    if raw_type in EVENT_TYPE_ALIASES:
        return EVENT_TYPE_ALIASES[raw_type]
    try:
        return EventType(raw_type)
    except ValueError:
        return None


def parse_event(raw: Any):
    """
    Parse a stored event dict into a typed record.

    Args:
        raw: One event as persisted by the session store

    Returns:
        The typed record, or None when the event is unknown or malformed
    """
    if not isinstance(raw, Mapping):
        logger.warning(f"[EVENTS] Skipping non-object event: {raw!r:.80}")
        return None

    kind = normalize_event_type(raw.get("type"), raw.get("data"))
    if kind is None:
        logger.info(f"[EVENTS] Skipping unknown event type: {raw.get('type')!r}")
        return None

    try:
        return _event_adapter.validate_python({**raw, "type": kind.value})
    except ValidationError as e:
        logger.warning(f"[EVENTS] Skipping malformed {kind.value} event: {e.error_count()} error(s)")
        return None


def validate(events: Any, metadata: Any, strict: bool = False) -> None:
    """
    Check an incoming batch before anything is written.

    Args:
        events: The batch of events
        metadata: The metadata patch sent with the batch
        strict: Also require ``timestamp``, ``userAgent`` and ``url``

    Raises:
        InvalidSessionData: When the batch is not acceptable
    """
    if isinstance(events, (str, bytes, bytearray, Mapping)) or not isinstance(events, Sequence):
        raise InvalidSessionData("events must be an array of event records")
    for index, event in enumerate(events):
        if not isinstance(event, Mapping) or not isinstance(event.get("type"), str):
            raise InvalidSessionData(f"event {index} is not an event record")
    if metadata is None:
        raise InvalidSessionData("metadata is required")
    if not isinstance(metadata, Mapping):
        raise InvalidSessionData("metadata must be an object")
    if strict:
        missing = [key for key in REQUIRED_METADATA_KEYS if not metadata.get(key)]
        if missing:
            raise InvalidSessionData(f"metadata is missing required fields: {', '.join(missing)}")
