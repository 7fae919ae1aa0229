from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from dashboard.models.session import AgentSession, Instance
from dashboard.models.timeline import FileEdit, TimelineEvent
from dashboard.models.token_usage import TokenUsage

T = 1_700_000_000_000


def _post(client: TestClient, **event):
    return client.post("/events", json=event)


def _created(client: TestClient, session_id: str = "s1", timestamp: int = T, **fields):
    return _post(
        client,
        type="session.created",
        sessionId=session_id,
        timestamp=timestamp,
        **fields,
    )


# --- session.created ---


def test_session_created(client: TestClient, session: Session, fetch):
    resp = _created(
        client,
        title="Fix the build",
        hostname="vps1",
        instance="/home/dev/app",
        parentSessionId="parent-1",
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    row = fetch("s1")
    assert row.title == "Fix the build"
    assert row.hostname == "vps1"
    assert row.directory == "/home/dev/app"
    assert row.parent_session_id == "parent-1"
    assert row.status == "active"
    assert row.created_at == T
    assert row.updated_at == T

    instance = session.get(Instance, "vps1")
    assert instance is not None
    assert instance.last_seen > 0


def test_session_created_defaults(client: TestClient, session: Session, fetch):
    _created(client)
    row = fetch("s1")
    assert row.title == "Untitled"
    assert row.hostname == "unknown"
    assert row.directory is None
    assert session.exec(select(Instance)).all() == []


def test_session_created_replay_is_upsert(client: TestClient, session: Session, fetch):
    _created(client, title="First", hostname="vps1")
    _post(client, type="session.idle", sessionId="s1", timestamp=T + 1)
    resp = _created(client, title="Second", hostname="vps2", timestamp=T + 2)
    assert resp.status_code == 200

    rows = session.exec(select(AgentSession)).all()
    assert len(rows) == 1
    row = fetch("s1")
    assert row.title == "Second"
    assert row.hostname == "vps2"
    assert row.status == "active"
    assert row.created_at == T + 2
    assert row.updated_at == T + 2


def test_session_created_replay_keeps_token_totals(client: TestClient, fetch):
    _created(client)
    _post(client, type="tokens", sessionId="s1", tokensIn=10, tokensOut=5, cost=0.01, timestamp=T + 1)
    _created(client, title="Resumed", timestamp=T + 2)

    row = fetch("s1")
    assert row.title == "Resumed"
    assert row.token_total == 15
    assert row.cost_total == pytest.approx(0.01)


# --- session.updated / idle / error ---


def test_session_updated_changes_title_only(client: TestClient, fetch):
    _created(client, title="Old")
    _post(client, type="session.idle", sessionId="s1", timestamp=T + 1)
    _post(client, type="tokens", sessionId="s1", tokensIn=1, tokensOut=1, timestamp=T + 2)

    resp = _post(client, type="session.updated", sessionId="s1", title="New", timestamp=T + 3)
    assert resp.status_code == 200

    row = fetch("s1")
    assert row.title == "New"
    assert row.updated_at == T + 3
    assert row.status == "idle"
    assert row.token_total == 2


def test_session_updated_without_title_keeps_title(client: TestClient, fetch):
    _created(client, title="Keep me")
    _post(client, type="session.updated", sessionId="s1", timestamp=T + 5)
    row = fetch("s1")
    assert row.title == "Keep me"
    assert row.updated_at == T + 5


def test_session_idle(client: TestClient, fetch):
    _created(client)
    resp = _post(client, type="session.idle", sessionId="s1", timestamp=T + 10)
    assert resp.status_code == 200
    row = fetch("s1")
    assert row.status == "idle"
    assert row.updated_at == T + 10


def test_session_error(client: TestClient, fetch):
    _created(client)
    resp = _post(client, type="session.error", sessionId="s1", error="boom", timestamp=T + 10)
    assert resp.status_code == 200
    row = fetch("s1")
    assert row.status == "error"
    assert row.updated_at == T + 10


# --- timeline ---


def test_timeline_event_stored_and_touches_session(client: TestClient, session: Session, fetch):
    _created(client)
    resp = _post(
        client,
        type="timeline",
        sessionId="s1",
        eventType="tool",
        summary="Called Read tool",
        tool="read",
        providerId="anthropic",
        modelId="claude",
        timestamp=T + 7,
    )
    assert resp.status_code == 200

    events = session.exec(select(TimelineEvent)).all()
    assert len(events) == 1
    event = events[0]
    assert event.id is not None
    assert event.session_id == "s1"
    assert event.event_type == "tool"
    assert event.summary == "Called Read tool"
    assert event.tool_name == "read"
    assert event.provider_id == "anthropic"
    assert event.model_id == "claude"
    assert fetch("s1").updated_at == T + 7


def test_timeline_events_sharing_timestamp_get_distinct_ids(client: TestClient, session: Session):
    _created(client)
    for summary in ("first", "second"):
        _post(client, type="timeline", sessionId="s1", eventType="message", summary=summary, timestamp=T + 1)

    ids = [e.id for e in session.exec(select(TimelineEvent).order_by(TimelineEvent.id)).all()]
    assert len(ids) == 2
    assert ids[0] < ids[1]


def test_permission_then_user_event(client: TestClient, fetch):
    _created(client)
    _post(client, type="session.idle", sessionId="s1", timestamp=T + 1)

    _post(client, type="timeline", sessionId="s1", eventType="permission", summary="Approve?", timestamp=T + 2)
    row = fetch("s1")
    assert row.needs_attention == 1
    assert row.status == "idle"

    _post(client, type="timeline", sessionId="s1", eventType="user", summary="yes", timestamp=T + 3)
    row = fetch("s1")
    assert row.needs_attention == 0
    assert row.status == "active"
    assert row.updated_at == T + 3


def test_non_user_event_does_not_clear_attention(client: TestClient, fetch):
    _created(client)
    _post(client, type="timeline", sessionId="s1", eventType="permission", timestamp=T + 1)
    _post(client, type="timeline", sessionId="s1", eventType="tool", timestamp=T + 2)
    assert fetch("s1").needs_attention == 1


# --- tokens ---


def test_tokens_accumulate_across_interleaved_sessions(client: TestClient, session: Session, fetch):
    _created(client, "s1")
    _created(client, "s2")
    batches = [(100, 200, 0.005), (10, 20, 0.001), (1, 2, 0.0)]
    for i, (tokens_in, tokens_out, cost) in enumerate(batches):
        _post(client, type="tokens", sessionId="s1", tokensIn=tokens_in, tokensOut=tokens_out, cost=cost, timestamp=T + i)
        _post(client, type="tokens", sessionId="s2", tokensIn=7, tokensOut=0, cost=0.5, timestamp=T + i)

    s1 = fetch("s1")
    assert s1.token_total == sum(i + o for i, o, _ in batches)
    assert s1.cost_total == pytest.approx(sum(c for _, _, c in batches))
    s2 = fetch("s2")
    assert s2.token_total == 21
    assert s2.cost_total == pytest.approx(1.5)

    ledger = session.exec(select(TokenUsage).where(TokenUsage.session_id == "s1")).all()
    assert len(ledger) == 3


def test_tokens_record_all_fields(client: TestClient, session: Session, fetch):
    _created(client)
    _post(
        client,
        type="tokens",
        sessionId="s1",
        tokensIn=5,
        tokensOut=6,
        cacheRead=1000,
        cacheWrite=7,
        reasoning=8,
        cost=0.25,
        providerId="anthropic",
        modelId="claude",
        agent="build",
        durationMs=1234,
        timestamp=T + 1,
    )
    record = session.exec(select(TokenUsage)).one()
    assert record.tokens_cache_read == 1000
    assert record.tokens_cache_write == 7
    assert record.tokens_reasoning == 8
    assert record.agent == "build"
    assert record.duration_ms == 1234
    # cache reads are not part of the session total
    assert fetch("s1").token_total == 11
    assert fetch("s1").updated_at == T + 1


@pytest.mark.parametrize(
    "field,value",
    [
        ("tokensIn", -500),
        ("tokensOut", -1),
        ("cacheRead", -1),
        ("cacheWrite", -1),
        ("reasoning", -1),
        ("cost", -1.0),
        ("durationMs", -1),
    ],
)
def test_negative_token_counts_rejected(client: TestClient, session: Session, fetch, field, value):
    _created(client)
    _post(client, type="tokens", sessionId="s1", tokensIn=100, cost=0.5, timestamp=T + 1)

    resp = _post(client, type="tokens", sessionId="s1", timestamp=T + 2, **{field: value})
    assert resp.status_code == 400

    row = fetch("s1")
    assert row.token_total == 100
    assert row.cost_total == pytest.approx(0.5)
    assert row.updated_at == T + 1
    assert len(session.exec(select(TokenUsage)).all()) == 1


# --- file.edit ---


def test_file_edit_recorded(client: TestClient, session: Session):
    _created(client)
    resp = _post(
        client,
        type="file.edit",
        sessionId="s1",
        filePath="src/app.py",
        fileExtension="py",
        operation="edit",
        linesAdded=3,
        linesRemoved=1,
        timestamp=T + 1,
    )
    assert resp.status_code == 200
    edit = session.exec(select(FileEdit)).one()
    assert edit.file_path == "src/app.py"
    assert edit.lines_added == 3


# --- unknown sessions, bad input, faults ---


@pytest.mark.parametrize(
    "event",
    [
        {"type": "session.updated", "title": "x"},
        {"type": "session.idle"},
        {"type": "session.error"},
        {"type": "timeline", "eventType": "tool"},
        {"type": "tokens", "tokensIn": 1, "tokensOut": 1, "cost": 1.0},
        {"type": "file.edit", "filePath": "a.py"},
    ],
)
def test_events_for_unknown_session_are_noops(client: TestClient, session: Session, fetch, event):
    resp = _post(client, sessionId="ghost", timestamp=T, **event)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert fetch("ghost") is None
    assert session.exec(select(TimelineEvent)).all() == []
    assert session.exec(select(TokenUsage)).all() == []
    assert session.exec(select(FileEdit)).all() == []


def test_malformed_json_rejected(client: TestClient):
    resp = client.post(
        "/events", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400


def test_non_object_body_rejected(client: TestClient):
    resp = client.post("/events", json=["session.created"])
    assert resp.status_code == 400


def test_missing_session_id_rejected(client: TestClient):
    resp = _post(client, type="timeline", eventType="tool", timestamp=T)
    assert resp.status_code == 400


def test_missing_timestamp_rejected(client: TestClient):
    resp = _post(client, type="session.idle", sessionId="s1")
    assert resp.status_code == 400


def test_unknown_event_type_accepted(client: TestClient):
    resp = _post(client, type="session.compacted", sessionId="s1", timestamp=T)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_processing_fault_returns_server_error(client: TestClient):
    with patch(
        "dashboard.api.events.EventProcessor.process",
        side_effect=RuntimeError("disk full"),
    ):
        resp = _created(client)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Processing failed"


def test_api_key_required_when_configured(client: TestClient, secured):
    assert _created(client).status_code == 401
    assert client.post(
        "/events",
        json={"type": "session.created", "sessionId": "s1", "timestamp": T},
        headers={"X-API-Key": "wrong"},
    ).status_code == 401
    resp = client.post(
        "/events",
        json={"type": "session.created", "sessionId": "s1", "timestamp": T},
        headers={"X-API-Key": "test-key"},
    )
    assert resp.status_code == 200


def test_localhost_agents_skip_api_key(client: TestClient, secured):
    resp = client.post(
        "/events",
        json={"type": "session.created", "sessionId": "s1", "timestamp": T},
        headers={"Host": "localhost:8000"},
    )
    assert resp.status_code == 200


# --- end to end ---


def test_created_then_tokens_then_fetch(client: TestClient):
    _created(client, hostname="vps1")
    _post(client, type="tokens", sessionId="s1", tokensIn=100, tokensOut=200, cost=0.005, timestamp=T + 1)

    resp = client.get("/api/sessions/s1")
    assert resp.status_code == 200
    data = resp.json()["session"]
    assert data["token_total"] == 300
    assert data["cost_total"] == pytest.approx(0.005)
    assert data["status"] == "active"
