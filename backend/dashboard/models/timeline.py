from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class TimelineEvent(SQLModel, table=True):
    __tablename__ = "timeline_events"
    __table_args__ = (Index("idx_timeline_session", "session_id", "timestamp"),)

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id")
    timestamp: int
    event_type: str  # "tool" | "message" | "user" | "error" | "permission" | ...
    summary: str = Field(default="")
    tool_name: str | None = Field(default=None)
    provider_id: str | None = Field(default=None)
    model_id: str | None = Field(default=None)


class FileEdit(SQLModel, table=True):
    __tablename__ = "file_edits"

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id", index=True)
    file_path: str = Field(default="")
    file_extension: str | None = Field(default=None)
    operation: str = Field(default="unknown")
    lines_added: int = Field(default=0)
    lines_removed: int = Field(default=0)
    timestamp: int
