"""Apply agent lifecycle events to the store.

Each event is one transaction. Mutations are either upserts keyed by id or
SQL-side increments, so events for different sessions can be applied
concurrently without extra locking. The processor never talks to the
broadcast hub itself: it returns the notifications that the caller should
fan out once the transaction has committed.
"""

import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session

from dashboard.models.events import (
    FileEditEvent,
    IngestEvent,
    SessionCreated,
    SessionError,
    SessionIdle,
    SessionUpdated,
    Timeline,
    Tokens,
)
from dashboard.models.session import AgentSession, Instance
from dashboard.models.timeline import FileEdit, TimelineEvent
from dashboard.models.token_usage import TokenUsage
from dashboard.services.broadcast import Notification
from dashboard.status import now_ms

logger = logging.getLogger(__name__)


def timeline_payload(event: TimelineEvent) -> dict[str, Any]:
    """Wire shape of a timeline event, carrying its store-assigned id."""
    return {
        "id": event.id,
        "sessionId": event.session_id,
        "timestamp": event.timestamp,
        "eventType": event.event_type,
        "summary": event.summary,
        "toolName": event.tool_name,
        "providerId": event.provider_id,
        "modelId": event.model_id,
    }


class EventProcessor:
    def __init__(self, session: Session):
        self.session = session

    def process(self, event: IngestEvent) -> list[Notification]:
        match event:
            case SessionCreated():
                return self._session_created(event)
            case SessionUpdated():
                return self._session_updated(event)
            case SessionIdle():
                return self._session_idle(event)
            case SessionError():
                return self._session_error(event)
            case Timeline():
                return self._timeline(event)
            case Tokens():
                return self._tokens(event)
            case FileEditEvent():
                return self._file_edit(event)
            case _:
                logger.warning(f"No handler for event {type(event).__name__}")
                return []

    # --- helpers ---

    def _insert(self, model):
        if self.session.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    def _update_session(self, session_id: str, **values: Any) -> bool:
        """Update one session row; False when the id is unknown."""
        result = self.session.exec(
            update(AgentSession).where(AgentSession.id == session_id).values(**values)
        )
        return result.rowcount > 0

    def _skip_unknown(self, event: IngestEvent) -> list[Notification]:
        self.session.rollback()
        logger.info(f"Ignoring {event.type} for unknown session {event.session_id}")
        return []

    # --- handlers ---

    def _session_created(self, event: SessionCreated) -> list[Notification]:
        stmt = self._insert(AgentSession).values(
            id=event.session_id,
            title=event.title,
            hostname=event.hostname,
            directory=event.instance,
            parent_session_id=event.parent_session_id,
            status="active",
            created_at=event.timestamp,
            updated_at=event.timestamp,
            needs_attention=0,
            token_total=0,
            cost_total=0.0,
        )
        # A replayed id overwrites the descriptive fields; the token/cost
        # totals belong to the ledger and are left alone.
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "title": stmt.excluded.title,
                "hostname": stmt.excluded.hostname,
                "directory": stmt.excluded.directory,
                "parent_session_id": stmt.excluded.parent_session_id,
                "status": "active",
                "created_at": stmt.excluded.created_at,
                "updated_at": stmt.excluded.updated_at,
                "needs_attention": 0,
            },
        )
        self.session.exec(stmt)

        if event.hostname and event.hostname != "unknown":
            seen = now_ms()
            instance_stmt = self._insert(Instance).values(hostname=event.hostname, last_seen=seen)
            instance_stmt = instance_stmt.on_conflict_do_update(
                index_elements=["hostname"], set_={"last_seen": seen}
            )
            self.session.exec(instance_stmt)

        self.session.commit()
        row = self.session.get(AgentSession, event.session_id, populate_existing=True)
        return [Notification.session_created(row.model_dump())]

    def _session_updated(self, event: SessionUpdated) -> list[Notification]:
        values: dict[str, Any] = {"updated_at": event.timestamp}
        if event.title is not None:
            values["title"] = event.title
        if not self._update_session(event.session_id, **values):
            return self._skip_unknown(event)
        self.session.commit()
        row = self.session.get(AgentSession, event.session_id, populate_existing=True)
        return [Notification.session_updated(row.model_dump())]

    def _session_idle(self, event: SessionIdle) -> list[Notification]:
        if not self._update_session(event.session_id, status="idle", updated_at=event.timestamp):
            return self._skip_unknown(event)
        self.session.commit()
        row = self.session.get(AgentSession, event.session_id, populate_existing=True)
        return [
            Notification.idle(
                event.session_id,
                title=row.title,
                is_subagent=row.parent_session_id is not None,
            )
        ]

    def _session_error(self, event: SessionError) -> list[Notification]:
        if not self._update_session(event.session_id, status="error", updated_at=event.timestamp):
            return self._skip_unknown(event)
        self.session.commit()
        row = self.session.get(AgentSession, event.session_id, populate_existing=True)
        return [Notification.error(event.session_id, event.error, title=row.title)]

    def _timeline(self, event: Timeline) -> list[Notification]:
        row = self.session.get(AgentSession, event.session_id)
        if row is None:
            return self._skip_unknown(event)

        title = row.title
        is_subagent = row.parent_session_id is not None
        had_attention = bool(row.needs_attention)
        re_engaged = event.event_type == "user" and (row.status != "active" or had_attention)

        timeline_event = TimelineEvent(
            session_id=event.session_id,
            timestamp=event.timestamp,
            event_type=event.event_type,
            summary=event.summary,
            tool_name=event.tool,
            provider_id=event.provider_id,
            model_id=event.model_id,
        )
        self.session.add(timeline_event)

        values: dict[str, Any] = {"updated_at": event.timestamp}
        if event.event_type == "permission":
            values["needs_attention"] = 1
        elif event.event_type == "user":
            values.update(needs_attention=0, status="active")
        self._update_session(event.session_id, **values)
        self.session.commit()
        self.session.refresh(timeline_event)

        # The id is only known after the insert has committed.
        notifications = [Notification.timeline(timeline_payload(timeline_event))]
        if event.event_type == "permission":
            notifications.append(
                Notification.attention(
                    event.session_id, True, title=title, is_subagent=is_subagent
                )
            )
        elif re_engaged:
            notifications.append(
                Notification.session_updated(
                    {
                        "id": event.session_id,
                        "status": "active",
                        "needs_attention": 0,
                        "updated_at": event.timestamp,
                    }
                )
            )
            if had_attention:
                notifications.append(Notification.attention(event.session_id, False))
        return notifications

    def _tokens(self, event: Tokens) -> list[Notification]:
        # Increment in SQL so concurrent token events for one session both land.
        incremented = self._update_session(
            event.session_id,
            token_total=AgentSession.token_total + (event.tokens_in + event.tokens_out),
            cost_total=AgentSession.cost_total + event.cost,
            updated_at=event.timestamp,
        )
        if not incremented:
            return self._skip_unknown(event)

        self.session.add(
            TokenUsage(
                session_id=event.session_id,
                provider_id=event.provider_id,
                model_id=event.model_id,
                agent=event.agent,
                tokens_in=event.tokens_in,
                tokens_out=event.tokens_out,
                tokens_cache_read=event.cache_read,
                tokens_cache_write=event.cache_write,
                tokens_reasoning=event.reasoning,
                cost=event.cost,
                duration_ms=event.duration_ms,
                timestamp=event.timestamp,
            )
        )
        self.session.commit()
        row = self.session.get(AgentSession, event.session_id, populate_existing=True)
        return [
            Notification.session_updated(
                {
                    "id": row.id,
                    "token_total": row.token_total,
                    "cost_total": row.cost_total,
                    "updated_at": row.updated_at,
                }
            )
        ]

    def _file_edit(self, event: FileEditEvent) -> list[Notification]:
        if self.session.get(AgentSession, event.session_id) is None:
            return self._skip_unknown(event)
        self.session.add(
            FileEdit(
                session_id=event.session_id,
                file_path=event.file_path,
                file_extension=event.file_extension,
                operation=event.operation,
                lines_added=event.lines_added,
                lines_removed=event.lines_removed,
                timestamp=event.timestamp,
            )
        )
        self.session.commit()
        return []
