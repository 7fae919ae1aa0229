from sqlmodel import Field, SQLModel


class TokenUsage(SQLModel, table=True):
    """Append-only ledger row; one per billable request."""

    __tablename__ = "token_usage"

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id", index=True)
    provider_id: str | None = Field(default=None)
    model_id: str | None = Field(default=None)
    agent: str | None = Field(default=None)
    tokens_in: int = Field(default=0)
    tokens_out: int = Field(default=0)
    tokens_cache_read: int = Field(default=0)
    tokens_cache_write: int = Field(default=0)
    tokens_reasoning: int = Field(default=0)
    cost: float = Field(default=0.0)
    duration_ms: int | None = Field(default=None)
    timestamp: int
