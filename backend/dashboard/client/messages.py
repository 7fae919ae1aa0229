"""Frames pushed by the server over the dashboard WebSocket."""

import json
import logging
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from dashboard.client.models import SessionPatch, SessionView, TimelineEntry

logger = logging.getLogger(__name__)


class _CamelData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AttentionData(_CamelData):
    session_id: str
    needs_attention: bool
    title: str | None = None
    audio_url: str | None = None
    is_subagent: bool = False


class IdleData(_CamelData):
    session_id: str
    title: str | None = None
    audio_url: str | None = None
    is_subagent: bool = False


class ErrorData(_CamelData):
    session_id: str
    error: str = "Unknown error"
    title: str | None = None


class AuthMessage(BaseModel):
    type: Literal["auth"]
    success: bool


class SessionCreatedMessage(BaseModel):
    type: Literal["session.created"]
    data: SessionView


class SessionUpdatedMessage(BaseModel):
    type: Literal["session.updated"]
    data: SessionPatch


class TimelineMessage(BaseModel):
    type: Literal["timeline"]
    data: TimelineEntry


class AttentionMessage(BaseModel):
    type: Literal["attention"]
    data: AttentionData


class IdleMessage(BaseModel):
    type: Literal["idle"]
    data: IdleData


class ErrorMessage(BaseModel):
    type: Literal["error"]
    data: ErrorData


ServerMessage = Annotated[
    AuthMessage
    | SessionCreatedMessage
    | SessionUpdatedMessage
    | TimelineMessage
    | AttentionMessage
    | IdleMessage
    | ErrorMessage,
    Field(discriminator="type"),
]

MESSAGE_TYPES = frozenset(
    {"auth", "session.created", "session.updated", "timeline", "attention", "idle", "error"}
)

_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)


def parse_message(raw: str | bytes) -> ServerMessage | None:
    """Decode and validate one frame; ``None`` means drop it."""
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Dropping undecodable frame")
        return None

    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        logger.warning("Dropping frame without a type")
        return None
    if payload["type"] not in MESSAGE_TYPES:
        logger.debug(f"Ignoring unknown message type {payload['type']!r}")
        return None

    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Dropping invalid {payload['type']} frame: {e.error_count()} error(s)")
        return None
