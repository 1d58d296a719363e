"""FastAPI application entry point for the PHI access core."""
import logging

import sentry_sdk
from fastapi import FastAPI
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sqlalchemy import text

from phi_core.api.errors import install_exception_handlers
from phi_core.api.middleware import RequestAuditContextMiddleware
from phi_core.api.routers import audit, resources
from phi_core.core.config import settings
from phi_core.core.telemetry import configure_telemetry
from phi_core.db.session import engine

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.sentry_enabled:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logging.info("Sentry initialized for error tracking")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="PHI Core API",
    description="Access control, field encryption and audit for protected health information",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.add_middleware(RequestAuditContextMiddleware)
install_exception_handlers(app)

# ============================================================================
# Routers
# ============================================================================

app.include_router(resources.router)
app.include_router(audit.router)

configure_telemetry(app, engine)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
