"""REST client used to resynchronize a dashboard store."""

import logging
from typing import Any

import httpx

from dashboard.client.config import ClientSettings
from dashboard.client.models import SessionView, TimelineEntry
from dashboard.client.store import DashboardStore

logger = logging.getLogger(__name__)


class DashboardAPI:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self.client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "DashboardAPI":
        return cls(settings.api_url, api_key=settings.api_key)

    async def __aenter__(self) -> "DashboardAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        resp = await self.client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    async def get_sessions(
        self,
        status: str | None = None,
        hostname: str | None = None,
        directory: str | None = None,
        search: str | None = None,
    ) -> list[SessionView]:
        params = {
            key: value
            for key, value in {
                "status": status,
                "hostname": hostname,
                "directory": directory,
                "search": search,
            }.items()
            if value
        }
        rows = await self._get("/api/sessions", params=params or None)
        return [SessionView.model_validate(row) for row in rows]

    async def get_session(self, session_id: str) -> tuple[SessionView, list[TimelineEntry]]:
        data = await self._get(f"/api/sessions/{session_id}")
        session = SessionView.model_validate(data["session"])
        timeline = [TimelineEntry.model_validate(row) for row in data["timeline"]]
        return session, timeline

    async def resync(self, store: DashboardStore) -> None:
        """Replace the store's sessions, and the open session's timeline, from REST.

        Every other cached timeline is dropped.
        """
        sessions = await self.get_sessions()
        store.set_sessions(sessions)

        selected = store.selected_session_id
        if selected is not None and store.get_session(selected) is not None:
            _, timeline = await self.get_session(selected)
            store.set_timeline(selected, timeline)
            store.clear_timelines(keep=[selected])
        else:
            store.clear_timelines()
        logger.info(f"Resynchronized {len(sessions)} session(s)")
