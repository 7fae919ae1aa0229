from sqlmodel import Field, SQLModel


class AgentSession(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(primary_key=True)  # assigned by the agent instance
    title: str = Field(default="Untitled")
    hostname: str = Field(default="unknown")
    directory: str | None = Field(default=None)
    parent_session_id: str | None = Field(default=None)
    status: str = Field(default="active", index=True)  # "active" | "idle" | "error" | "archived"
    created_at: int  # epoch millis
    updated_at: int = Field(index=True)
    needs_attention: int = Field(default=0)
    token_total: int = Field(default=0)
    cost_total: float = Field(default=0.0)


class Instance(SQLModel, table=True):
    __tablename__ = "instances"

    hostname: str = Field(primary_key=True)
    last_seen: int
