"""Webhook receiving lifecycle events from agent instances."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlmodel import Session

from dashboard.api.deps import get_hub, verify_webhook_key
from dashboard.database import get_session
from dashboard.models.events import parse_event
from dashboard.services.broadcast import BroadcastHub
from dashboard.services.ingestion import EventProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.post("/events", dependencies=[Depends(verify_webhook_key)])
async def receive_event(
    request: Request,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    hub: BroadcastHub = Depends(get_hub),
):
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Rejected webhook body: invalid JSON")
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        logger.warning("Rejected webhook body: not a JSON object")
        raise HTTPException(status_code=400, detail="Event must be a JSON object")

    try:
        event = parse_event(payload)
    except ValidationError as e:
        logger.warning(f"Rejected {payload.get('type')} event: {e.error_count()} invalid field(s)")
        raise HTTPException(
            status_code=400,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        )
    if event is None:
        return {"success": True}

    try:
        notifications = EventProcessor(session).process(event)
    except Exception:
        session.rollback()
        logger.exception(f"Webhook processing failed for {event.type} event")
        raise HTTPException(status_code=500, detail="Processing failed")

    # Fan-out runs after the response; a slow or dead client never fails ingestion.
    if notifications:
        background_tasks.add_task(hub.broadcast_many, notifications)
    return {"success": True}
