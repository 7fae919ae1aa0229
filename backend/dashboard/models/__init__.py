from dashboard.models.session import AgentSession, Instance
from dashboard.models.timeline import FileEdit, TimelineEvent
from dashboard.models.token_usage import TokenUsage

__all__ = [
    "AgentSession",
    "FileEdit",
    "Instance",
    "TimelineEvent",
    "TokenUsage",
]
