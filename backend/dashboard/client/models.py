"""Read-only views of server state held by the dashboard client."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dashboard.status import now_ms


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionView(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    title: str = "Untitled"
    hostname: str = "unknown"
    directory: str | None = None
    parent_session_id: str | None = None
    status: str = "active"
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    needs_attention: int = 0
    token_total: int = 0
    cost_total: float = 0.0


class SessionPatch(BaseModel):
    """Partial session update; only the fields actually sent are applied."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str | None = None
    hostname: str | None = None
    directory: str | None = None
    parent_session_id: str | None = None
    status: str | None = None
    created_at: int | None = None
    updated_at: int | None = None
    needs_attention: int | None = None
    token_total: int | None = None
    cost_total: float | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"id"})


class TimelineEntry(BaseModel):
    # Live frames use camelCase keys, REST rows use snake_case; accept both.
    model_config = ConfigDict(
        frozen=True, extra="ignore", alias_generator=to_camel, populate_by_name=True
    )

    id: int
    session_id: str
    timestamp: int
    event_type: str
    summary: str = ""
    tool_name: str | None = None
    provider_id: str | None = None
    model_id: str | None = None
