import httpx
import pytest

from dashboard.client.api import DashboardAPI
from dashboard.client.config import ClientSettings
from dashboard.client.models import TimelineEntry
from dashboard.client.store import DashboardStore

SESSION = {
    "id": "s1",
    "title": "Build",
    "hostname": "vps1",
    "directory": "/srv/app",
    "parent_session_id": None,
    "status": "active",
    "effective_status": "active",
    "created_at": 1,
    "updated_at": 2,
    "needs_attention": 0,
    "token_total": 300,
    "cost_total": 0.005,
}

TIMELINE = [
    {
        "id": 1,
        "session_id": "s1",
        "timestamp": 1,
        "event_type": "tool",
        "summary": "Called Read tool",
        "tool_name": "read",
        "provider_id": None,
        "model_id": None,
    }
]


def _api(requests: list[httpx.Request], api_key: str = "") -> DashboardAPI:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/api/sessions":
            return httpx.Response(200, json=[SESSION])
        if request.url.path == "/api/sessions/s1":
            return httpx.Response(200, json={"session": SESSION, "timeline": TIMELINE})
        return httpx.Response(404, json={"detail": "Session not found"})

    headers = {"X-API-Key": api_key} if api_key else {}
    client = httpx.AsyncClient(
        base_url="http://dashboard", headers=headers, transport=httpx.MockTransport(handler)
    )
    return DashboardAPI("http://dashboard", client=client)


@pytest.mark.asyncio
async def test_get_sessions_passes_filters():
    requests: list[httpx.Request] = []
    async with _api(requests) as api:
        sessions = await api.get_sessions(status="stale", hostname="vps1")

    assert [s.id for s in sessions] == ["s1"]
    assert sessions[0].token_total == 300
    assert requests[0].url.params["status"] == "stale"
    assert requests[0].url.params["hostname"] == "vps1"
    assert "search" not in requests[0].url.params


@pytest.mark.asyncio
async def test_get_session_detail():
    async with _api([]) as api:
        session, timeline = await api.get_session("s1")
    assert session.title == "Build"
    assert [e.tool_name for e in timeline] == ["read"]


@pytest.mark.asyncio
async def test_missing_session_raises():
    async with _api([]) as api:
        with pytest.raises(httpx.HTTPStatusError):
            await api.get_session("nope")


def test_api_key_header_set():
    api = DashboardAPI("http://dashboard", api_key="secret")
    assert api.client.headers["X-API-Key"] == "secret"
    assert "X-API-Key" not in DashboardAPI("http://dashboard").client.headers


@pytest.mark.asyncio
async def test_resync_refreshes_selected_timeline():
    store = DashboardStore()
    store.select_session("s1")
    requests: list[httpx.Request] = []

    async with _api(requests) as api:
        await api.resync(store)

    assert list(store.sessions) == ["s1"]
    assert [e.id for e in store.timeline("s1")] == [1]
    assert [r.url.path for r in requests] == ["/api/sessions", "/api/sessions/s1"]


@pytest.mark.asyncio
async def test_resync_without_selection_skips_detail():
    store = DashboardStore()
    requests: list[httpx.Request] = []

    async with _api(requests) as api:
        await api.resync(store)

    assert [r.url.path for r in requests] == ["/api/sessions"]


@pytest.mark.asyncio
async def test_resync_drops_stale_timelines():
    store = DashboardStore()
    store.add_timeline_event(
        "s1", TimelineEntry(id=99, session_id="s1", timestamp=9, event_type="tool")
    )
    store.add_timeline_event(
        "gone", TimelineEntry(id=2, session_id="gone", timestamp=2, event_type="tool")
    )
    store.add_timeline_event(
        "other", TimelineEntry(id=3, session_id="other", timestamp=3, event_type="tool")
    )
    store.select_session("s1")

    async with _api([]) as api:
        await api.resync(store)

    assert list(store.timelines) == ["s1"]
    assert [e.id for e in store.timeline("s1")] == [1]


@pytest.mark.asyncio
async def test_resync_without_selection_drops_all_timelines():
    store = DashboardStore()
    store.add_timeline_event(
        "s1", TimelineEntry(id=5, session_id="s1", timestamp=5, event_type="tool")
    )

    async with _api([]) as api:
        await api.resync(store)

    assert store.timelines == {}
    assert list(store.sessions) == ["s1"]


def test_from_settings():
    settings = ClientSettings(api_url="http://vps1:8000", api_key="secret")
    api = DashboardAPI.from_settings(settings)
    assert api.client.base_url.host == "vps1"
    assert api.client.base_url.port == 8000
    assert api.client.headers["X-API-Key"] == "secret"
