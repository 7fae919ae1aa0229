"""In-memory fan-out of domain notifications to connected dashboard sockets."""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any, Literal, Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "session.created", "session.updated", "timeline", "attention", "idle", "error"
]


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...


def _compact(**fields: Any) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


class Notification(BaseModel):
    type: NotificationType
    data: dict[str, Any]

    @classmethod
    def session_created(cls, session: dict[str, Any]) -> "Notification":
        return cls(type="session.created", data=session)

    @classmethod
    def session_updated(cls, session: dict[str, Any]) -> "Notification":
        return cls(type="session.updated", data=session)

    @classmethod
    def timeline(cls, event: dict[str, Any]) -> "Notification":
        return cls(type="timeline", data=event)

    @classmethod
    def attention(
        cls,
        session_id: str,
        needs_attention: bool,
        title: str | None = None,
        audio_url: str | None = None,
        is_subagent: bool | None = None,
    ) -> "Notification":
        return cls(
            type="attention",
            data={
                "sessionId": session_id,
                "needsAttention": needs_attention,
                **_compact(title=title, audioUrl=audio_url, isSubagent=is_subagent),
            },
        )

    @classmethod
    def idle(
        cls,
        session_id: str,
        title: str | None = None,
        audio_url: str | None = None,
        is_subagent: bool | None = None,
    ) -> "Notification":
        return cls(
            type="idle",
            data={
                "sessionId": session_id,
                **_compact(title=title, audioUrl=audio_url, isSubagent=is_subagent),
            },
        )

    @classmethod
    def error(
        cls,
        session_id: str,
        message: str,
        title: str | None = None,
        audio_url: str | None = None,
    ) -> "Notification":
        return cls(
            type="error",
            data={
                "sessionId": session_id,
                "error": message,
                **_compact(title=title, audioUrl=audio_url),
            },
        )


class BroadcastHub:
    """Registry of live dashboard connections.

    Delivery is fire-and-forget: nothing is queued for clients that are not
    connected, and a client whose send fails or times out is dropped.
    """

    def __init__(self, send_timeout: float = 2.0) -> None:
        self.send_timeout = send_timeout
        self._connections: set[Connection] = set()

    @property
    def client_count(self) -> int:
        return len(self._connections)

    def register(self, connection: Connection) -> None:
        self._connections.add(connection)
        logger.info(f"WS client connected (total: {self.client_count})")

    def unregister(self, connection: Connection) -> None:
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info(f"WS client disconnected (total: {self.client_count})")

    async def broadcast(self, notification: Notification) -> None:
        payload = notification.model_dump_json()
        # Snapshot: unregister may run while sends are in flight.
        targets = list(self._connections)
        if not targets:
            return
        results = await asyncio.gather(
            *(self._send(connection, payload) for connection in targets),
            return_exceptions=True,
        )
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(f"Broadcast failed, removing client: {result!r}")
                self._connections.discard(connection)

    async def broadcast_many(self, notifications: Iterable[Notification]) -> None:
        for notification in notifications:
            await self.broadcast(notification)

    async def _send(self, connection: Connection, payload: str) -> None:
        await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)

