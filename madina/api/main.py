"""
madina.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn madina.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

load_dotenv()

from madina import __version__  # noqa: E402
from madina.api.auth import router as auth_router  # noqa: E402
from madina.api.deps import get_engine  # noqa: E402
from madina.api.rate_limit import configure_rate_limiter  # noqa: E402
from madina.api.routes.admin import router as admin_router  # noqa: E402
from madina.api.routes.dashboard import router as dashboard_router  # noqa: E402
from madina.api.routes.events import router as events_router  # noqa: E402
from madina.api.routes.finance import router as finance_router  # noqa: E402
from madina.api.routes.invoices import router as invoices_router  # noqa: E402
from madina.api.routes.kyc import router as kyc_router  # noqa: E402
from madina.api.routes.media import router as media_router  # noqa: E402
from madina.api.routes.messages import router as messages_router  # noqa: E402
from madina.api.routes.news import router as news_router  # noqa: E402
from madina.api.routes.settings import router as settings_router  # noqa: E402
from madina.api.routes.wallet import router as wallet_router  # noqa: E402
from madina.database.engine import init_db  # noqa: E402
from madina.services.log_buffer import install_handler  # noqa: E402
from madina.services.upload_service import UPLOAD_DIR, ensure_upload_dir  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Uvicorn reconfigures logging on start, so the ring buffer goes on here.
    install_handler()
    ensure_upload_dir()

    engine = get_engine()
    init_db(engine)
    configure_rate_limiter(engine=engine)
    logger.info("Madina API started (%s)", engine.url.database)
    yield
    logger.info("Madina API shutting down")


app = FastAPI(
    title="Madina Wallet API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
for _router in (
    auth_router,
    settings_router,
    dashboard_router,
    wallet_router,
    invoices_router,
    kyc_router,
    events_router,
    news_router,
    messages_router,
    media_router,
    finance_router,
    admin_router,
):
    app.include_router(_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok", "version": __version__}


# Uploaded images served as static assets; the directory is created in lifespan
app.mount(
    "/api/uploads",
    StaticFiles(directory=str(UPLOAD_DIR), check_dir=False),
    name="uploads",
)
