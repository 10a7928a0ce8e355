"""FastAPI application wiring for the auth service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.admin import router as admin_router
from .api.errors import register_exception_handlers
from .api.routes import router as auth_router
from .config import Settings, get_settings
from .domain.otp import OtpEngine
from .domain.service import AuthService
from .domain.session_guard import SessionGuard
from .notifier import SmtpNotifier
from .repository import AccountRepository
from .security.rate_limiter import build_rate_limiter

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def build_auth_service(repository: AccountRepository, settings: Settings) -> AuthService:
    """Assemble the orchestrator and its collaborators from configuration."""
    return AuthService(
        repository,
        OtpEngine(SmtpNotifier.from_settings(settings), ttl_seconds=settings.otp_ttl_seconds),
        SessionGuard(stale_after_hours=settings.stale_session_hours),
        operator_emails=settings.operator_emails,
        trial_days=settings.trial_days,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.auth_service = build_auth_service(AccountRepository(pool), settings)
    app.state.rate_limiter = build_rate_limiter(settings)
    if not settings.operator_emails:
        logging.getLogger(__name__).warning("OPERATOR_EMAILS is empty; admin routes will reject everyone")
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

register_exception_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth_router)
app.include_router(admin_router)
