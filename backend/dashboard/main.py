import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api.events import router as events_router
from dashboard.api.sessions import router as sessions_router
from dashboard.api.ws import router as ws_router
from dashboard.config import settings
from dashboard.database import init_db
from dashboard.services.broadcast import BroadcastHub

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.getLogger("dashboard").setLevel(settings.log_level.upper())
    init_db()
    app.state.hub = BroadcastHub(send_timeout=settings.ws_send_timeout)
    logger.info(
        f"Dashboard backend ready (api key {'on' if settings.api_key else 'off'}, "
        f"ws auth {'on' if settings.frontend_password else 'off'})"
    )
    yield
    logger.info(f"Shutting down with {app.state.hub.client_count} WS client(s) attached")


app = FastAPI(title="OpenCode Dashboard", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(events_router)
app.include_router(sessions_router, prefix="/api")
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


def run() -> None:
    uvicorn.run(
        "dashboard.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
