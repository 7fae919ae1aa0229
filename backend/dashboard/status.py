"""Session status helpers shared by the server and the dashboard client."""

import time

SESSION_STATUSES = ("active", "idle", "error", "stale", "archived")
STALE_THRESHOLD_MS = 60_000


def now_ms() -> int:
    return int(time.time() * 1000)


def effective_status(
    status: str,
    updated_at: int,
    now: int | None = None,
    threshold_ms: int = STALE_THRESHOLD_MS,
) -> str:
    """Project the displayed status of a session.

    An ``active`` session that has not been touched for more than
    ``threshold_ms`` is shown as ``stale``. Exactly ``threshold_ms`` of
    silence is still ``active``. The result is never written back.
    """
    if now is None:
        now = now_ms()
    if status == "active" and now - updated_at > threshold_ms:
        return "stale"
    return status
