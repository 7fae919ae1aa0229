"""Ingestion event schema: what agent instances POST to the webhook.

Each event type is its own model, tagged by ``type``. ``parse_event`` returns
``None`` for types this server does not know about so that newer agents can
keep posting without being rejected.
"""

import logging
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str = Field(min_length=1)
    timestamp: int


class SessionCreated(_Event):
    type: Literal["session.created"]
    title: str = "Untitled"
    hostname: str = "unknown"
    instance: str | None = None  # working directory of the agent
    parent_session_id: str | None = None


class SessionUpdated(_Event):
    type: Literal["session.updated"]
    title: str | None = None


class SessionIdle(_Event):
    type: Literal["session.idle"]


class SessionError(_Event):
    type: Literal["session.error"]
    error: str = "Unknown error"


class Timeline(_Event):
    type: Literal["timeline"]
    event_type: str = "unknown"
    summary: str = ""
    tool: str | None = None
    provider_id: str | None = None
    model_id: str | None = None


class Tokens(_Event):
    type: Literal["tokens"]
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cache_read: int = Field(default=0, ge=0)
    cache_write: int = Field(default=0, ge=0)
    reasoning: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    provider_id: str | None = None
    model_id: str | None = None
    agent: str | None = None
    duration_ms: int | None = Field(default=None, ge=0)


class FileEditEvent(_Event):
    type: Literal["file.edit"]
    file_path: str = ""
    file_extension: str | None = None
    operation: str = "unknown"
    lines_added: int = 0
    lines_removed: int = 0


IngestEvent = Annotated[
    SessionCreated
    | SessionUpdated
    | SessionIdle
    | SessionError
    | Timeline
    | Tokens
    | FileEditEvent,
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset(
    {
        "session.created",
        "session.updated",
        "session.idle",
        "session.error",
        "timeline",
        "tokens",
        "file.edit",
    }
)

_adapter: TypeAdapter[IngestEvent] = TypeAdapter(IngestEvent)


def parse_event(payload: dict[str, Any]) -> IngestEvent | None:
    """Validate a decoded webhook body.

    Raises ``pydantic.ValidationError`` when a known event is malformed.
    """
    event_type = payload.get("type")
    if not isinstance(event_type, str) or event_type not in EVENT_TYPES:
        logger.warning(f"Ignoring event with unknown type {event_type!r}")
        return None
    return _adapter.validate_python(payload)
