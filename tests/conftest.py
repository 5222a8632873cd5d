"""Shared test fixtures for the Agentic Marketplace test suite.

Provides:
    - Settings pinned to test values (no .env)
    - A throwaway SQLite database per test (aiosqlite)
    - A simulated settlement service that records every batch
    - A seeded seller and helpers that drive an order to a given status
"""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from agentic_marketplace.config import Settings
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from agentic_marketplace.infrastructure.settlement import SimulatedSettlementService
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator
from agentic_marketplace.services.order_registry import SellerRegistry

BUYER_WALLET = "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"
SELLER_WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
SELLER_ID = "agent-research-bot"
SELLER_WEBHOOK = "https://agent.example.com/webhook"

ADMIN_KEY = "test-admin-key"
CRON_SECRET = "test-cron-secret"


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with test values; never reads a .env file."""
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        platform_fee_percent=Decimal("10"),
        auto_release_window_hours=168,
        auto_resolve_confidence_threshold=85,
        admin_api_key=ADMIN_KEY,
        cron_secret=CRON_SECRET,
        webhook_retry_delays="0,0,0",
    )


@pytest.fixture
def buyer() -> Actor:
    return Actor.client(BUYER_WALLET)


@pytest.fixture
def seller_actor() -> Actor:
    return Actor.agent(SELLER_ID)


@pytest.fixture
def admin() -> Actor:
    return Actor.admin("ops@marketplace")


@pytest.fixture
def sample_requirements() -> dict:
    return {
        "description": "Summarize the attached research paper in 300 words",
        "inputs": "https://example.com/paper.pdf",
        "delivery_preferences": "Markdown",
    }


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(settings):
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def seller(session_factory):
    async with session_factory.begin() as session:
        return await SellerRegistry(session).register(
            SELLER_ID,
            SELLER_WALLET,
            name="Research Bot",
            webhook_url=SELLER_WEBHOOK,
        )


@pytest.fixture
def settlement() -> SimulatedSettlementService:
    return SimulatedSettlementService()


@pytest.fixture
def orchestrator(session_factory, settlement, settings, seller) -> TransactionOrchestrator:
    return TransactionOrchestrator(session_factory, settlement, settings=settings)


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------


async def place_paid_order(
    orchestrator: TransactionOrchestrator,
    requirements: dict,
    amount: str = "100.00",
) -> str:
    outcome = await orchestrator.place_order(
        gig_id="gig-summaries",
        agent_id=SELLER_ID,
        client_wallet=BUYER_WALLET,
        amount_usdc=amount,
        requirements=requirements,
        actor=Actor.client(BUYER_WALLET),
        gig_title="Paper summaries",
        payment_reference="0xpayment",
    )
    return outcome.order.id


async def deliver_order(
    orchestrator: TransactionOrchestrator,
    requirements: dict,
    amount: str = "100.00",
    content: str = "Here is the 300 word summary you asked for.",
) -> str:
    """Drive a fresh order to ``delivered`` and return its id."""
    order_id = await place_paid_order(orchestrator, requirements, amount)
    seller = Actor.agent(SELLER_ID)
    await orchestrator.transition(order_id, "start_work", seller)
    await orchestrator.deliver(order_id, seller, content=content)
    return order_id


async def dispute_order(
    orchestrator: TransactionOrchestrator,
    requirements: dict,
    amount: str = "100.00",
    reason: str = "Summary ignores the paper's main results",
) -> tuple[str, str]:
    """Drive a fresh order to ``disputed``; returns (order id, dispute id)."""
    order_id = await deliver_order(orchestrator, requirements, amount)
    outcome = await orchestrator.open_dispute(
        order_id, Actor.client(BUYER_WALLET), reason=reason, category="quality"
    )
    return order_id, outcome.dispute.id
