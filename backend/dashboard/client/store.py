"""In-memory mirror of the backend's session and timeline state.

Every mutation builds new containers instead of editing the current ones, so
a listener can detect changes by identity. The store is a projection only:
after a reconnect it is refilled from the REST API rather than trusted.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict

from dashboard.client.config import ClientSettings
from dashboard.client.models import ConnectionStatus, SessionView, TimelineEntry
from dashboard.status import SESSION_STATUSES, STALE_THRESHOLD_MS, effective_status, now_ms

logger = logging.getLogger(__name__)

MAX_TIMELINE_EVENTS = 1000

Listener = Callable[["DashboardStore"], None]


class Filters(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = ""
    hostname: str = ""
    directory: str = ""
    search: str = ""


class Stats(BaseModel):
    total: int
    active: int
    idle: int
    stale: int
    attention: int
    total_tokens: int
    total_cost: float


class DashboardStore:
    def __init__(
        self,
        max_timeline_events: int = MAX_TIMELINE_EVENTS,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
    ):
        self.max_timeline_events = max_timeline_events
        self.stale_threshold_ms = stale_threshold_ms
        self._sessions: dict[str, SessionView] = {}
        self._timelines: dict[str, tuple[TimelineEntry, ...]] = {}
        self._connection_status = ConnectionStatus.DISCONNECTED
        self._selected_session_id: str | None = None
        self._filters = Filters()
        self._listeners: list[Listener] = []

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "DashboardStore":
        return cls(max_timeline_events=settings.max_timeline_events)

    # --- read side ---

    @property
    def sessions(self) -> Mapping[str, SessionView]:
        return MappingProxyType(self._sessions)

    @property
    def timelines(self) -> Mapping[str, tuple[TimelineEntry, ...]]:
        return MappingProxyType(self._timelines)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection_status

    @property
    def selected_session_id(self) -> str | None:
        return self._selected_session_id

    @property
    def selected_session(self) -> SessionView | None:
        if self._selected_session_id is None:
            return None
        return self._sessions.get(self._selected_session_id)

    @property
    def filters(self) -> Filters:
        return self._filters

    def get_session(self, session_id: str) -> SessionView | None:
        return self._sessions.get(session_id)

    def timeline(self, session_id: str) -> tuple[TimelineEntry, ...]:
        return self._timelines.get(session_id, ())

    def effective_status(self, session: SessionView, now: int | None = None) -> str:
        return effective_status(
            session.status, session.updated_at, now, self.stale_threshold_ms
        )

    def filtered_sessions(self, now: int | None = None) -> list[SessionView]:
        f = self._filters
        query = f.search.lower()
        result = []
        for session in self._sessions.values():
            if f.status and self.effective_status(session, now) != f.status:
                continue
            if f.hostname and session.hostname != f.hostname:
                continue
            if f.directory and session.directory != f.directory:
                continue
            if query and query not in session.title.lower() and query not in session.id.lower():
                continue
            result.append(session)
        return result

    def stats(self, now: int | None = None) -> Stats:
        if now is None:
            now = now_ms()
        statuses = [self.effective_status(s, now) for s in self._sessions.values()]
        return Stats(
            total=len(self._sessions),
            active=statuses.count("active"),
            idle=statuses.count("idle"),
            stale=statuses.count("stale"),
            attention=sum(1 for s in self._sessions.values() if s.needs_attention),
            total_tokens=sum(s.token_total for s in self._sessions.values()),
            total_cost=sum(s.cost_total for s in self._sessions.values()),
        )

    # --- change notification ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called after every change; returns an unsubscribe."""
        self._listeners = [*self._listeners, listener]

        def unsubscribe() -> None:
            self._listeners = [fn for fn in self._listeners if fn is not listener]

        return unsubscribe

    def _changed(self) -> None:
        for listener in self._listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed")

    # --- mutations ---

    def set_sessions(self, sessions: Iterable[SessionView]) -> None:
        self._sessions = {session.id: session for session in sessions}
        self._changed()

    def add_session(self, session: SessionView) -> None:
        """Insert a new session first, or merge a snapshot over a known one."""
        existing = self._sessions.get(session.id)
        if existing is None:
            self._sessions = {session.id: session, **self._sessions}
        else:
            merged = existing.model_copy(update=session.model_dump())
            self._sessions = {**self._sessions, session.id: merged}
        self._changed()

    def update_session(self, session_id: str, **changes: Any) -> bool:
        """Shallow-merge ``changes`` into a known session; unknown ids are ignored."""
        existing = self._sessions.get(session_id)
        if existing is None:
            return False
        self._sessions = {**self._sessions, session_id: existing.model_copy(update=changes)}
        self._changed()
        return True

    def remove_session(self, session_id: str) -> None:
        if session_id not in self._sessions and session_id not in self._timelines:
            return
        self._sessions = {k: v for k, v in self._sessions.items() if k != session_id}
        self._timelines = {k: v for k, v in self._timelines.items() if k != session_id}
        if self._selected_session_id == session_id:
            self._selected_session_id = None
        self._changed()

    def set_timeline(self, session_id: str, events: Iterable[TimelineEntry]) -> None:
        entries = tuple(events)[-self.max_timeline_events :]
        self._timelines = {**self._timelines, session_id: entries}
        self._changed()

    def clear_timelines(self, keep: Iterable[str] = ()) -> None:
        """Drop every cached timeline except those of the ``keep`` sessions."""
        kept = set(keep)
        self._timelines = {k: v for k, v in self._timelines.items() if k in kept}
        self._changed()

    def add_timeline_event(self, session_id: str, event: TimelineEntry) -> bool:
        """Append ``event`` unless its id is already present; oldest entries are evicted."""
        existing = self._timelines.get(session_id, ())
        if any(e.id == event.id for e in existing):
            return False
        # A full list has already evicted every id below its oldest survivor.
        if len(existing) >= self.max_timeline_events and event.id < min(e.id for e in existing):
            return False
        updated = (*existing, event)[-self.max_timeline_events :]
        self._timelines = {**self._timelines, session_id: updated}
        self._changed()
        return True

    def set_connection_status(self, status: ConnectionStatus) -> None:
        if status == self._connection_status:
            return
        self._connection_status = status
        self._changed()

    def select_session(self, session_id: str | None) -> None:
        self._selected_session_id = session_id
        self._changed()

    def set_filter(self, key: str, value: str) -> None:
        if key not in Filters.model_fields:
            raise ValueError(f"Unknown filter {key!r}")
        if key == "status" and value and value not in SESSION_STATUSES:
            raise ValueError(f"Unknown status {value!r}")
        self._filters = self._filters.model_copy(update={key: value})
        self._changed()

    def clear_filters(self) -> None:
        self._filters = Filters()
        self._changed()
