from fastapi import Header, HTTPException, Request

from dashboard.auth import is_local_host, secrets_match
from dashboard.config import settings
from dashboard.services.broadcast import BroadcastHub


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


async def verify_api_key(x_api_key: str | None = Header(default=None)) -> None:
    if settings.api_key and not secrets_match(x_api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def verify_webhook_key(
    request: Request, x_api_key: str | None = Header(default=None)
) -> None:
    """Like verify_api_key, but agents posting from the same host need no key."""
    if not settings.api_key or is_local_host(request.headers.get("host")):
        return
    if not secrets_match(x_api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Unauthorized")
