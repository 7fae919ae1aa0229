"""Per-tab WebSocket connection to the dashboard backend.

States::

    disconnected -> connecting -> connected (unauthenticated)
                 -> connected (authenticated) -> disconnected
    error: retries exhausted or credential rejected

Frames that arrive before the auth acknowledgement are buffered and applied,
in arrival order, once it succeeds. Every frame is applied idempotently, so
a frame seen twice (replay, duplicate fan-out) leaves the store unchanged.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from dashboard.client.api import DashboardAPI
from dashboard.client.config import ClientSettings
from dashboard.client.messages import (
    AttentionMessage,
    AuthMessage,
    ErrorMessage,
    IdleMessage,
    ServerMessage,
    SessionCreatedMessage,
    SessionUpdatedMessage,
    TimelineMessage,
    parse_message,
)
from dashboard.client.models import ConnectionStatus
from dashboard.client.store import DashboardStore

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[Transport]]


async def _websockets_connector(url: str) -> Transport:
    return await websockets.connect(url)


class ConnectionManager:
    def __init__(
        self,
        store: DashboardStore,
        url: str,
        password: str = "",
        *,
        api: DashboardAPI | None = None,
        connector: Connector | None = None,
        initial_reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 15.0,
        max_retries: int = 5,
        heartbeat_interval: float = 30.0,
    ):
        self.store = store
        self.url = url
        self.password = password
        self.api = api
        self.initial_reconnect_delay = initial_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.max_retries = max_retries
        self.heartbeat_interval = heartbeat_interval

        self.authenticated = False
        self.auth_failed = False
        self.retry_count = 0

        self._connector = connector or _websockets_connector
        self._sleep = asyncio.sleep
        self._transport: Transport | None = None
        self._connecting = False
        self._intentional_disconnect = False
        self._reconnect_delay = initial_reconnect_delay
        self._queue: list[ServerMessage] = []
        self._run_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        store: DashboardStore,
        settings: ClientSettings,
        api: DashboardAPI | None = None,
    ) -> "ConnectionManager":
        return cls(
            store,
            settings.ws_url,
            settings.password,
            api=api,
            initial_reconnect_delay=settings.initial_reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
            max_retries=settings.max_retries,
            heartbeat_interval=settings.heartbeat_interval,
        )

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    # --- public API ---

    def connect(self) -> None:
        """Open the socket unless one is already opening or open."""
        if self._connecting or self._transport is not None:
            return
        self._connecting = True
        self._intentional_disconnect = False
        self.store.set_connection_status(ConnectionStatus.CONNECTING)
        self._run_task = asyncio.get_running_loop().create_task(self._run())

    async def disconnect(self) -> None:
        """Close on purpose: no reconnect, pending timers and buffer dropped."""
        self._intentional_disconnect = True
        self._cancel_reconnect()
        self._stop_heartbeat()
        self._connecting = False
        self.authenticated = False
        self._queue = []

        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

        run_task, self._run_task = self._run_task, None
        if run_task is not None and not run_task.done() and run_task is not asyncio.current_task():
            run_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await run_task

        if not self.auth_failed:
            self.store.set_connection_status(ConnectionStatus.DISCONNECTED)

    def reset_and_reconnect(self) -> None:
        """Manual retry after an auth failure or exhausted retries."""
        self.auth_failed = False
        self.retry_count = 0
        self._reconnect_delay = self.initial_reconnect_delay
        self._cancel_reconnect()
        self.connect()

    # --- connection epoch ---

    async def _run(self) -> None:
        try:
            transport = await self._connector(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._connecting = False
            logger.warning(f"Connection to {self.url} failed: {e}")
            self.store.set_connection_status(ConnectionStatus.DISCONNECTED)
            self._schedule_reconnect()
            return
        except asyncio.CancelledError:
            self._connecting = False
            raise

        self._transport = transport
        self._connecting = False
        logger.info(f"Connected to {self.url}")
        try:
            await self._on_open(transport)
            async for raw in transport:
                await self._on_frame(raw)
                if self.auth_failed:
                    await transport.close()
                    break
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
        finally:
            self._on_close(transport)

    async def _on_open(self, transport: Transport) -> None:
        self.authenticated = False
        self._queue = []
        if self.password:
            await transport.send(json.dumps({"type": "auth", "password": self.password}))
        else:
            await self._on_authenticated(transport)

    async def _on_frame(self, raw: str | bytes) -> None:
        message = parse_message(raw)
        if message is None:
            return
        if isinstance(message, AuthMessage):
            await self._on_auth_ack(message.success)
            return
        if not self.authenticated:
            self._queue.append(message)
            return
        self.apply(message)

    async def _on_auth_ack(self, success: bool) -> None:
        if self.authenticated or self._transport is None:
            return
        if success:
            await self._on_authenticated(self._transport)
            return
        logger.error("Server rejected credentials, not reconnecting")
        self.auth_failed = True
        self._queue = []
        self.store.set_connection_status(ConnectionStatus.ERROR)

    async def _on_authenticated(self, transport: Transport) -> None:
        # Snapshot first, then the buffered deltas on top of it.
        if self.api is not None:
            try:
                await self.api.resync(self.store)
            except httpx.HTTPError as e:
                logger.warning(f"Resync failed, continuing with live updates only: {e}")

        self.authenticated = True
        self.retry_count = 0
        self._reconnect_delay = self.initial_reconnect_delay

        queued, self._queue = self._queue, []
        for message in queued:
            self.apply(message)
        self.store.set_connection_status(ConnectionStatus.CONNECTED)
        self._start_heartbeat(transport)

    def _on_close(self, transport: Transport) -> None:
        if self._transport is transport:
            self._transport = None
        self._connecting = False
        self.authenticated = False
        self._queue = []
        self._stop_heartbeat()
        logger.info("Disconnected")

        if self.auth_failed or self._intentional_disconnect:
            return
        self.store.set_connection_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    # --- reconnect policy ---

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None or self.auth_failed:
            return
        if self.retry_count >= self.max_retries:
            logger.warning(f"Giving up after {self.retry_count} reconnect attempt(s)")
            self.store.set_connection_status(ConnectionStatus.ERROR)
            return

        self.retry_count += 1
        delay = self._reconnect_delay
        self._reconnect_delay = min(delay * 2, self.max_reconnect_delay)
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.retry_count}/{self.max_retries})")
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay)
        )

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    # --- heartbeat ---

    def _start_heartbeat(self, transport: Transport) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.get_running_loop().create_task(
            self._heartbeat(transport)
        )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat(self, transport: Transport) -> None:
        ping = json.dumps({"type": "ping"})
        while self.authenticated:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await transport.send(ping)
            except ConnectionClosed:
                return

    # --- applying server frames ---

    def apply(self, message: ServerMessage) -> None:
        """Apply one domain frame to the store. Safe to call repeatedly."""
        match message:
            case SessionCreatedMessage(data=session):
                self.store.add_session(session)
            case SessionUpdatedMessage(data=patch):
                self.store.update_session(patch.id, **patch.changes())
            case TimelineMessage(data=event):
                self.store.add_timeline_event(event.session_id, event)
            case AttentionMessage(data=data):
                self.store.update_session(
                    data.session_id, needs_attention=1 if data.needs_attention else 0
                )
                if data.needs_attention:
                    logger.info(f"{data.title or data.session_id} needs attention")
            case IdleMessage(data=data):
                self.store.update_session(data.session_id, status="idle")
            case ErrorMessage(data=data):
                self.store.update_session(data.session_id, status="error")
            case _:
                logger.debug(f"Nothing to apply for {type(message).__name__}")
