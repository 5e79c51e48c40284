"""
warden.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn warden.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from warden.api.deps import get_config, get_engine  # noqa: E402
from warden.api.routes.admin import router as admin_router  # noqa: E402
from warden.api.routes.members import router as members_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Dashboard origins from ``CORS_ALLOW_ORIGINS``; none when unset."""
    origins = os.getenv("CORS_ALLOW_ORIGINS", "")
    return [o.strip().rstrip("/") for o in origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — load config, warm the DB engine."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    cfg = get_config()
    engine = get_engine()
    logger.info(
        "%s API started — engine ready (%s), tz=%s",
        cfg.service_name, engine.url.database, cfg.timezone,
    )
    yield
    logger.info("%s API shutting down", cfg.service_name)


app = FastAPI(
    title="Warden API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(members_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
