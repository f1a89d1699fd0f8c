from __future__ import annotations

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger.json import JsonFormatter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import Base, engine
from .rate_limit import limiter
from .access.expiry import purge_expired
from .api import (
    routes_admin,
    routes_altcha,
    routes_feedback,
    routes_flags,
    routes_invites,
    routes_moderation,
    routes_news,
    routes_notifications,
    routes_popups,
    routes_posts,
    routes_reply_keys,
    routes_uploads,
    routes_users,
    routes_whispers,
)
from .auth.routes_auth import router as auth_router
from .auth.routes_webauthn import router as webauthn_router
from .auth.seed import seed_admin
from .security.headers import SecurityHeadersMiddleware
from . import models as _models  # noqa: F401  register tables

SERVICE_NAME = "noise-garden"
VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(
            JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)

_configure_logging()

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

try:
    purge_expired()
except SQLAlchemyError as exc:
    logging.getLogger("garden.expiry").warning("Startup purge failed: %s", exc)

# Seed default admin if no users exist
seed_admin()

app = FastAPI(
    title="noise.garden",
    version=VERSION,
    description=(
        "Ephemeral, invite-only social network. Posts expire, replies can be "
        "whispered or gated behind reply keys, and popup threads close "
        "themselves."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(webauthn_router)
app.include_router(routes_users.router)
app.include_router(routes_invites.router)
app.include_router(routes_posts.router)
app.include_router(routes_popups.router)
app.include_router(routes_flags.router)
app.include_router(routes_whispers.router)
app.include_router(routes_reply_keys.router)
app.include_router(routes_moderation.router)
app.include_router(routes_admin.router)
app.include_router(routes_notifications.router)
app.include_router(routes_feedback.router)
app.include_router(routes_news.router)
app.include_router(routes_altcha.router)
app.include_router(routes_uploads.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}


@app.get("/health", tags=["meta"])
def health() -> dict:
    return {"status": "healthy"}


@app.get("/healthz", tags=["meta"])
def healthz():
    """Database round-trip for load balancer probes."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logging.getLogger("garden.health").error("Database health check failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}
