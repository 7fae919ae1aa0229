import os

# Keep the app's own engine in memory; tests swap in their own session below.
os.environ.setdefault("DASHBOARD_DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402
from sqlmodel.pool import StaticPool  # noqa: E402

import dashboard.models  # noqa: E402, F401
from dashboard.config import settings  # noqa: E402
from dashboard.database import get_session  # noqa: E402
from dashboard.main import app  # noqa: E402
from dashboard.models.session import AgentSession  # noqa: E402
from dashboard.status import now_ms  # noqa: E402


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def hub(client: TestClient):
    return app.state.hub


@pytest.fixture
def secured():
    """Turn on the webhook API key and the WebSocket password for one test."""
    original = (settings.api_key, settings.frontend_password)
    settings.api_key = "test-key"
    settings.frontend_password = "test-password"
    yield settings
    settings.api_key, settings.frontend_password = original


@pytest.fixture
def make_session(session: Session):
    def _make(session_id: str = "s1", **fields) -> AgentSession:
        now = now_ms()
        row = AgentSession(
            id=session_id,
            title=fields.pop("title", "Test"),
            hostname=fields.pop("hostname", "vps1"),
            created_at=fields.pop("created_at", now),
            updated_at=fields.pop("updated_at", now),
            **fields,
        )
        session.add(row)
        session.commit()
        return row

    return _make


@pytest.fixture
def fetch(session: Session):
    """Read a session row as currently stored, bypassing the identity map."""

    def _fetch(session_id: str) -> AgentSession | None:
        session.expire_all()
        return session.get(AgentSession, session_id)

    return _fetch
