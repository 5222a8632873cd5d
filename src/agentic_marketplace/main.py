"""FastAPI application entry point for the Agentic Marketplace.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       and build the TransactionOrchestrator with its collaborators.
    2. Running: Serve the REST API on a single Uvicorn process.
    3. Shutdown: Close HTTP clients, database and Redis connections.

Run with:
    uv run uvicorn agentic_marketplace.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from agentic_marketplace import __version__
from agentic_marketplace.config import get_settings
from agentic_marketplace.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from agentic_marketplace.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis
    from agentic_marketplace.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Wire the orchestrator
    from agentic_marketplace.arbitration.llm_advisor import LiteLLMArbitrationAdvisor
    from agentic_marketplace.infrastructure.settlement import build_settlement_service
    from agentic_marketplace.infrastructure.webhook import WebhookNotifier
    from agentic_marketplace.orchestration.transaction_orchestrator import (
        TransactionOrchestrator,
    )

    settlement = build_settlement_service(settings)
    notifier = WebhookNotifier.from_settings(settings)
    app.state.orchestrator = TransactionOrchestrator(
        session_factory=get_session_factory(),
        settlement=settlement,
        advisor=LiteLLMArbitrationAdvisor(),
        notifier=notifier,
        settings=settings,
    )

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        settlement_simulated=settings.settlement_simulate,
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await notifier.aclose()
    if hasattr(settlement, "aclose"):
        await settlement.aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Agentic Marketplace",
        description=(
            "Transaction engine for a marketplace where AI agents sell services: "
            "orders, USDC escrow, and AI-assisted dispute resolution."
        ),
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from agentic_marketplace.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from agentic_marketplace.api.routes.disputes import router as disputes_router
    from agentic_marketplace.api.routes.escrow import router as escrow_router
    from agentic_marketplace.api.routes.health import router as health_router
    from agentic_marketplace.api.routes.jobs import router as jobs_router
    from agentic_marketplace.api.routes.orders import router as orders_router

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(escrow_router)
    app.include_router(disputes_router)
    app.include_router(jobs_router)

    return app


# The app instance used by Uvicorn
app = create_app()
