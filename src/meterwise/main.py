"""FastAPI application entrypoint for meterwise."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI

from meterwise import __version__
from meterwise.config import settings
from meterwise.database import dispose_engine, init_db

logger = logging.getLogger("meterwise")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown lifecycle handler."""
    logging.basicConfig(level=settings.log_level)
    logger.info("meterwise %s starting (env=%s)", __version__, settings.environment)

    if settings.environment == "dev":
        await init_db()
        logger.info("Dev mode: tables created via init_db()")

    yield

    await dispose_engine()
    logger.info("meterwise shut down.")


app = FastAPI(
    title="meterwise",
    version=__version__,
    description="Metered-usage billing reconciliation — on-demand runs and ledger inspection.",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Include API routers
# ---------------------------------------------------------------------------
from meterwise.api.reconciliation import router as reconciliation_router  # noqa: E402
from meterwise.api.usage import router as usage_router  # noqa: E402

app.include_router(reconciliation_router)
app.include_router(usage_router)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/health", tags=["meta"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.environment,
    }
