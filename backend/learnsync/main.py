import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from sqlalchemy import text

from . import developer_routes, webhook_routes
from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging
from .runtime import close_sync_engine, get_recent_events, get_sync_engine


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    get_sync_engine()
    get_recent_events()
    yield
    await close_sync_engine()


app = FastAPI(title="learnsync", version="0.1.0", lifespan=lifespan)
app.include_router(webhook_routes.router)
app.include_router(developer_routes.router)

settings_snapshot = get_settings()
logger.info("Debounce window: %ss", settings_snapshot.debounce_seconds)
logger.info("Ortto API key configured: %s", bool(settings_snapshot.ortto_api_key))
logger.info("Webhook signature verification: %s", bool(settings_snapshot.thinkific_webhook_secret))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence_mode": settings.persistence_mode}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "pool": get_pool_snapshot(engine),
        "persistence_mode": settings.persistence_mode,
    }


def run() -> None:
    import uvicorn

    uvicorn.run(
        "learnsync.main:app",
        host=os.getenv("LEARNSYNC_HOST", "0.0.0.0"),
        port=int(os.getenv("LEARNSYNC_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    run()
