"""REST read surface used by dashboards to (re)synchronize their state."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import delete, func
from sqlmodel import Session, col, select

from dashboard.api.deps import verify_api_key
from dashboard.config import settings
from dashboard.database import get_session
from dashboard.models.session import AgentSession, Instance
from dashboard.models.timeline import FileEdit, TimelineEvent
from dashboard.models.token_usage import TokenUsage
from dashboard.status import effective_status, now_ms

router = APIRouter(tags=["sessions"], dependencies=[Depends(verify_api_key)])


# --- Pydantic models ---


class SessionResponse(BaseModel):
    id: str
    title: str
    hostname: str
    directory: str | None
    parent_session_id: str | None
    status: str
    effective_status: str
    created_at: int
    updated_at: int
    needs_attention: int
    token_total: int
    cost_total: float


class TimelineEventResponse(BaseModel):
    id: int
    session_id: str
    timestamp: int
    event_type: str
    summary: str
    tool_name: str | None
    provider_id: str | None
    model_id: str | None


class SessionDetailResponse(BaseModel):
    session: SessionResponse
    timeline: list[TimelineEventResponse]


class SummaryResponse(BaseModel):
    total_sessions: int
    total_tokens: int
    total_cost: float


class ModelUsageResponse(BaseModel):
    model_id: str | None
    total_tokens: int
    total_cost: float


# --- Helpers ---


def _to_response(row: AgentSession, now: int) -> SessionResponse:
    return SessionResponse(
        **row.model_dump(),
        effective_status=effective_status(
            row.status, row.updated_at, now, settings.stale_threshold_ms
        ),
    )


def _get_session_or_404(session_id: str, session: Session) -> AgentSession:
    row = session.get(AgentSession, session_id)
    if not row:
        raise HTTPException(status_code=404, detail="Session not found")
    return row


# --- Endpoints ---


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(
    status: str | None = None,
    hostname: str | None = None,
    directory: str | None = None,
    search: str | None = None,
    session: Session = Depends(get_session),
):
    now = now_ms()
    stmt = select(AgentSession)
    if status == "stale":
        stmt = stmt.where(
            AgentSession.status == "active",
            AgentSession.updated_at < now - settings.stale_threshold_ms,
        )
    elif status:
        stmt = stmt.where(AgentSession.status == status)
    if hostname:
        stmt = stmt.where(AgentSession.hostname == hostname)
    if directory:
        stmt = stmt.where(AgentSession.directory == directory)
    if search:
        stmt = stmt.where(col(AgentSession.title).contains(search))
    rows = session.exec(stmt.order_by(col(AgentSession.updated_at).desc())).all()
    return [_to_response(row, now) for row in rows]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session_detail(session_id: str, session: Session = Depends(get_session)):
    row = _get_session_or_404(session_id, session)
    timeline = session.exec(
        select(TimelineEvent)
        .where(TimelineEvent.session_id == session_id)
        .order_by(col(TimelineEvent.timestamp), col(TimelineEvent.id))
    ).all()
    return SessionDetailResponse(
        session=_to_response(row, now_ms()),
        timeline=[TimelineEventResponse(**event.model_dump()) for event in timeline],
    )


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, session: Session = Depends(get_session)):
    row = _get_session_or_404(session_id, session)

    for model in (TimelineEvent, TokenUsage, FileEdit):
        session.exec(delete(model).where(model.session_id == session_id))

    session.delete(row)
    session.commit()
    return {"detail": "Session deleted"}


@router.get("/instances", response_model=list[Instance])
async def list_instances(session: Session = Depends(get_session)):
    return session.exec(select(Instance).order_by(col(Instance.hostname))).all()


@router.get("/analytics/summary", response_model=SummaryResponse)
async def analytics_summary(
    hostname: str | None = None, session: Session = Depends(get_session)
):
    stmt = select(
        func.count(AgentSession.id),
        func.coalesce(func.sum(AgentSession.token_total), 0),
        func.coalesce(func.sum(AgentSession.cost_total), 0.0),
    )
    if hostname:
        stmt = stmt.where(AgentSession.hostname == hostname)
    total_sessions, total_tokens, total_cost = session.exec(stmt).one()
    return SummaryResponse(
        total_sessions=total_sessions,
        total_tokens=total_tokens,
        total_cost=total_cost,
    )


@router.get("/analytics/models", response_model=list[ModelUsageResponse])
async def analytics_models(session: Session = Depends(get_session)):
    total_tokens = func.sum(TokenUsage.tokens_in + TokenUsage.tokens_out)
    rows = session.exec(
        select(TokenUsage.model_id, total_tokens, func.sum(TokenUsage.cost))
        .group_by(TokenUsage.model_id)
        .order_by(total_tokens.desc())
    ).all()
    return [
        ModelUsageResponse(model_id=model_id, total_tokens=tokens, total_cost=cost)
        for model_id, tokens, cost in rows
    ]
