"""End-to-end flows through the TransactionOrchestrator.

Runs against a throwaway SQLite database with the simulated settlement
service, so every test can assert on exactly which transfers were made.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from conftest import (
    BUYER_WALLET,
    SELLER_ID,
    SELLER_WALLET,
    deliver_order,
    dispute_order,
    place_paid_order,
)

from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.enums import (
    AiRecommendation,
    DisputeStatus,
    EscrowStatus,
    EventType,
    OrderStatus,
    SideEffectKind,
)
from agentic_marketplace.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    RoleNotPermittedError,
    SellerNotFoundError,
    ValidationError,
)
from agentic_marketplace.domain.protocols import ArbitrationVerdict
from agentic_marketplace.infrastructure.database.repositories import SideEffectRepository
from agentic_marketplace.infrastructure.settlement import (
    HttpSettlementClient,
    SimulatedSettlementService,
)
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator

BUYER = Actor.client(BUYER_WALLET)
SELLER = Actor.agent(SELLER_ID)
STRANGER = Actor.client("0x1111111111111111111111111111111111111111")
SYSTEM = Actor.system("scheduler")

DS = DisputeStatus


class StubAdvisor:
    """Returns a fixed verdict and remembers what it was shown."""

    def __init__(self, recommendation: AiRecommendation, confidence: int) -> None:
        self.verdict = ArbitrationVerdict(
            analysis="Reviewed the delivery against the requirements.",
            recommendation=recommendation,
            confidence=confidence,
        )
        self.summaries: list[str] = []

    async def arbitrate(self, case_summary: str) -> ArbitrationVerdict:
        self.summaries.append(case_summary)
        return self.verdict


def _later(hours: int = 169) -> datetime:
    return datetime.now(UTC) + timedelta(hours=hours)


# ---------------------------------------------------------------------------
# Placement & payment
# ---------------------------------------------------------------------------


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_paid_order_funds_escrow(self, orchestrator, sample_requirements) -> None:
        outcome = await orchestrator.place_order(
            gig_id="gig-summaries",
            agent_id=SELLER_ID,
            client_wallet=BUYER_WALLET,
            amount_usdc="100.00",
            requirements=sample_requirements,
            actor=BUYER,
            payment_reference="0xpayment",
        )

        assert outcome.order.status == OrderStatus.PAID
        assert outcome.order.escrow_id == outcome.escrow.id
        assert outcome.escrow.status == EscrowStatus.FUNDED
        assert outcome.escrow.seller_wallet == SELLER_WALLET
        assert outcome.escrow.auto_release_deadline is not None

    @pytest.mark.asyncio
    async def test_unpaid_order_then_payment(self, orchestrator, sample_requirements) -> None:
        placed = await orchestrator.place_order(
            gig_id="gig-summaries",
            agent_id=SELLER_ID,
            client_wallet=BUYER_WALLET,
            amount_usdc="12.5",
            requirements=sample_requirements,
            actor=BUYER,
        )
        assert placed.order.status == OrderStatus.PENDING
        assert placed.escrow.status == EscrowStatus.CREATED

        with pytest.raises(RoleNotPermittedError):
            await orchestrator.record_payment(placed.order.id, "0xsig", BUYER)

        paid = await orchestrator.record_payment(placed.order.id, "0xsig", SYSTEM)
        assert paid.order.status == OrderStatus.PAID
        assert paid.order.payment_reference == "0xsig"
        assert paid.escrow.status == EscrowStatus.FUNDED

    @pytest.mark.asyncio
    async def test_buyer_places_only_for_own_wallet(
        self, orchestrator, sample_requirements
    ) -> None:
        with pytest.raises(AuthorizationError):
            await orchestrator.place_order(
                gig_id="gig-summaries",
                agent_id=SELLER_ID,
                client_wallet=BUYER_WALLET,
                amount_usdc="10",
                requirements=sample_requirements,
                actor=STRANGER,
            )

    @pytest.mark.asyncio
    async def test_agents_cannot_place_orders(self, orchestrator, sample_requirements) -> None:
        with pytest.raises(RoleNotPermittedError):
            await orchestrator.place_order(
                gig_id="gig-summaries",
                agent_id=SELLER_ID,
                client_wallet=BUYER_WALLET,
                amount_usdc="10",
                requirements=sample_requirements,
                actor=SELLER,
            )

    @pytest.mark.asyncio
    async def test_unknown_seller(self, orchestrator, sample_requirements) -> None:
        with pytest.raises(SellerNotFoundError):
            await orchestrator.place_order(
                gig_id="gig-summaries",
                agent_id="agent-nobody",
                client_wallet=BUYER_WALLET,
                amount_usdc="10",
                requirements=sample_requirements,
                actor=BUYER,
            )


# ---------------------------------------------------------------------------
# Work, delivery & acceptance
# ---------------------------------------------------------------------------


class TestAcceptDelivery:
    @pytest.mark.asyncio
    async def test_accept_releases_escrow(
        self, orchestrator, settlement, settings, session_factory, sample_requirements
    ) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements, amount="100.00")

        outcome = await orchestrator.accept_delivery(order_id, BUYER)

        assert outcome.complete
        assert outcome.order.status == OrderStatus.COMPLETED
        assert outcome.escrow.status == EscrowStatus.RELEASED
        assert len(settlement.transfers) == 1
        _, legs, _ = settlement.transfers[0]
        assert {(leg.to_account, leg.amount) for leg in legs} == {
            (SELLER_WALLET, 90_000_000),
            (settings.platform_wallet, 10_000_000),
        }

        async with session_factory() as session:
            stats = await SideEffectRepository(session).find_by(
                order_id=order_id, kind=SideEffectKind.SELLER_STATS.value
            )
        assert len(stats) == 1

    @pytest.mark.asyncio
    async def test_only_the_buyer_accepts(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)
        with pytest.raises(AuthorizationError):
            await orchestrator.accept_delivery(order_id, STRANGER)
        with pytest.raises(RoleNotPermittedError):
            await orchestrator.accept_delivery(order_id, SELLER)

    @pytest.mark.asyncio
    async def test_cannot_accept_before_delivery(self, orchestrator, sample_requirements) -> None:
        order_id = await place_paid_order(orchestrator, sample_requirements)
        with pytest.raises(InvalidStateTransitionError):
            await orchestrator.accept_delivery(order_id, BUYER)

    @pytest.mark.asyncio
    async def test_revision_round_trip(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)

        revised = await orchestrator.transition(order_id, "request_revision", BUYER)
        assert revised.order.status == OrderStatus.REVISION_REQUESTED

        redelivered = await orchestrator.deliver(
            order_id, SELLER, delivery_type="url", url="https://example.com/v2"
        )
        assert redelivered.order.status == OrderStatus.DELIVERED

        accepted = await orchestrator.accept_delivery(order_id, BUYER)
        assert accepted.order.status == OrderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_other_agents_cannot_work_the_order(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await place_paid_order(orchestrator, sample_requirements)
        with pytest.raises(AuthorizationError):
            await orchestrator.transition(order_id, "start_work", Actor.agent("agent-other"))

    @pytest.mark.asyncio
    async def test_transition_rejects_actions_with_their_own_operation(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)
        with pytest.raises(ValidationError):
            await orchestrator.transition(order_id, "accept", BUYER)

    @pytest.mark.asyncio
    async def test_release_failure_is_a_warning(
        self, session_factory, settings, seller, sample_requirements
    ) -> None:
        broke = SimulatedSettlementService(custody_balance=1)
        orchestrator = TransactionOrchestrator(session_factory, broke, settings=settings)
        order_id = await deliver_order(orchestrator, sample_requirements)

        outcome = await orchestrator.accept_delivery(order_id, BUYER)

        assert not outcome.complete
        assert "Escrow release failed" in outcome.warnings[0]
        assert outcome.order.status == OrderStatus.COMPLETED
        escrow = await orchestrator.get_escrow(outcome.order.escrow_id)
        assert escrow.status == EscrowStatus.FUNDED

    @pytest.mark.asyncio
    async def test_garbled_gateway_reply_is_a_warning(
        self, session_factory, settings, seller, sample_requirements
    ) -> None:
        gateway = HttpSettlementClient(
            "http://settlement.test",
            http_client=httpx.AsyncClient(
                base_url="http://settlement.test",
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(200, text="<html>gateway ok</html>")
                ),
            ),
        )
        orchestrator = TransactionOrchestrator(session_factory, gateway, settings=settings)
        order_id = await deliver_order(orchestrator, sample_requirements)

        outcome = await orchestrator.accept_delivery(order_id, BUYER)

        assert outcome.order.status == OrderStatus.COMPLETED
        assert "Escrow release failed" in outcome.warnings[0]
        escrow = await orchestrator.get_escrow(outcome.order.escrow_id)
        assert escrow.status == EscrowStatus.FUNDED


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_cancel_paid_order_refunds(
        self, orchestrator, settlement, sample_requirements
    ) -> None:
        order_id = await place_paid_order(orchestrator, sample_requirements)

        outcome = await orchestrator.transition(order_id, "cancel", BUYER)

        assert outcome.order.status == OrderStatus.CANCELLED
        assert outcome.escrow.status == EscrowStatus.REFUNDED
        _, legs, _ = settlement.transfers[0]
        assert [(leg.to_account, leg.amount) for leg in legs] == [(BUYER_WALLET, 100_000_000)]

    @pytest.mark.asyncio
    async def test_cancel_unpaid_order_voids(
        self, orchestrator, settlement, sample_requirements
    ) -> None:
        placed = await orchestrator.place_order(
            gig_id="gig-summaries",
            agent_id=SELLER_ID,
            client_wallet=BUYER_WALLET,
            amount_usdc="10",
            requirements=sample_requirements,
            actor=BUYER,
        )

        outcome = await orchestrator.cancel_order(placed.order.id, SYSTEM)

        assert outcome.order.status == OrderStatus.CANCELLED
        assert outcome.escrow.status == EscrowStatus.CANCELLED
        assert settlement.transfers == []

    @pytest.mark.asyncio
    async def test_cannot_cancel_once_work_started(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await place_paid_order(orchestrator, sample_requirements)
        await orchestrator.transition(order_id, "start_work", SELLER)
        with pytest.raises(InvalidStateTransitionError):
            await orchestrator.cancel_order(order_id, BUYER)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


class TestOpenDispute:
    @pytest.mark.asyncio
    async def test_dispute_freezes_escrow(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)

        outcome = await orchestrator.open_dispute(
            order_id, BUYER, reason="Wrong output", category="quality"
        )

        assert outcome.complete
        assert outcome.order.status == OrderStatus.DISPUTED
        assert outcome.escrow.status == EscrowStatus.DISPUTED
        assert outcome.dispute.status == DisputeStatus.OPEN
        assert outcome.dispute.escrow_id == outcome.escrow.id

    @pytest.mark.asyncio
    async def test_short_reason_changes_nothing(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)

        with pytest.raises(ValidationError):
            await orchestrator.open_dispute(order_id, BUYER, reason="Too bad")

        order = await orchestrator.get_order(order_id)
        assert order.status == OrderStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_cannot_dispute_completed_order(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)
        await orchestrator.accept_delivery(order_id, BUYER)
        with pytest.raises(InvalidStateTransitionError):
            await orchestrator.open_dispute(order_id, BUYER, reason="Changed my mind later")

    @pytest.mark.asyncio
    async def test_missing_record_is_reconciled(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)

        with patch.object(
            TransactionOrchestrator,
            "_create_dispute_record",
            AsyncMock(side_effect=ConflictError("database went away")),
        ):
            outcome = await orchestrator.open_dispute(
                order_id, BUYER, reason="Summary is about another paper"
            )

        assert not outcome.complete
        assert outcome.dispute is None
        assert outcome.order.status == OrderStatus.DISPUTED

        with pytest.raises(RoleNotPermittedError):
            await orchestrator.reconcile_dispute_record(order_id, BUYER)

        rebuilt = await orchestrator.reconcile_dispute_record(order_id, Actor.admin())
        assert rebuilt.dispute.reason == "Summary is about another paper"
        assert rebuilt.dispute.status == DisputeStatus.OPEN

        again = await orchestrator.reconcile_dispute_record(order_id, Actor.admin())
        assert again.dispute.id == rebuilt.dispute.id

    @pytest.mark.asyncio
    async def test_reconcile_requires_disputed_order(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)
        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.reconcile_dispute_record(order_id, SYSTEM)
        assert exc_info.value.code == "ORDER_NOT_DISPUTED"


class TestAutoResolution:
    async def _arbitrated(
        self, session_factory, settlement, settings, sample_requirements, confidence
    ):
        advisor = StubAdvisor(AiRecommendation.PAY_SELLER, confidence)
        orchestrator = TransactionOrchestrator(
            session_factory, settlement, advisor=advisor, settings=settings
        )
        order_id, dispute_id = await dispute_order(orchestrator, sample_requirements)
        await orchestrator.request_arbitration(dispute_id, Actor.admin())
        return orchestrator, advisor, order_id, dispute_id

    @pytest.mark.asyncio
    async def test_confident_verdict_settles(
        self, session_factory, settlement, settings, seller, sample_requirements
    ) -> None:
        orchestrator, advisor, order_id, dispute_id = await self._arbitrated(
            session_factory, settlement, settings, sample_requirements, confidence=90
        )
        assert "Summary ignores the paper's main results" in advisor.summaries[0]

        outcome = await orchestrator.auto_resolve_dispute(dispute_id, SYSTEM)

        assert outcome.complete
        assert outcome.resolution == "pay_seller"
        assert outcome.escrow.status == EscrowStatus.RELEASED
        assert outcome.order.status == OrderStatus.COMPLETED
        assert outcome.dispute.status == DisputeStatus.RESOLVED_SELLER
        assert outcome.dispute.resolved_by == "ai_auto"
        assert outcome.dispute.auto_resolved is True
        assert len(settlement.transfers) == 1

    @pytest.mark.asyncio
    async def test_unsure_verdict_waits_for_admin(
        self, session_factory, settlement, settings, seller, sample_requirements
    ) -> None:
        orchestrator, _, order_id, dispute_id = await self._arbitrated(
            session_factory, settlement, settings, sample_requirements, confidence=80
        )

        outcome = await orchestrator.auto_resolve_dispute(dispute_id, SYSTEM)

        assert outcome.resolution is None
        assert outcome.dispute.status == DisputeStatus.AI_ARBITRATED
        assert settlement.transfers == []
        assert (await orchestrator.get_order(order_id)).status == OrderStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_arbitrate_and_resolve_when_enabled(
        self, session_factory, settlement, settings, seller, sample_requirements
    ) -> None:
        eager = settings.model_copy(update={"auto_resolve_after_arbitration": True})
        orchestrator = TransactionOrchestrator(
            session_factory,
            settlement,
            advisor=StubAdvisor(AiRecommendation.REFUND_BUYER, 95),
            settings=eager,
        )
        order_id, dispute_id = await dispute_order(orchestrator, sample_requirements)

        outcome = await orchestrator.arbitrate_and_maybe_resolve(dispute_id, SYSTEM)

        assert outcome.dispute.status == DisputeStatus.RESOLVED_BUYER
        assert outcome.order.status == OrderStatus.CANCELLED
        assert outcome.escrow.status == EscrowStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_arbitration_needs_an_advisor(self, orchestrator, sample_requirements) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)
        with pytest.raises(RuntimeError):
            await orchestrator.request_arbitration(dispute_id, Actor.admin())


class TestManualResolution:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("resolution", "escrow_status", "order_status", "dispute_status"),
        [
            ("refund_buyer", EscrowStatus.REFUNDED, OrderStatus.CANCELLED, DS.RESOLVED_BUYER),
            ("pay_seller", EscrowStatus.RELEASED, OrderStatus.COMPLETED, DS.RESOLVED_SELLER),
            ("split", EscrowStatus.REFUNDED, OrderStatus.CANCELLED, DS.RESOLVED_SPLIT),
        ],
    )
    async def test_records_agree(
        self,
        orchestrator,
        admin,
        sample_requirements,
        resolution,
        escrow_status,
        order_status,
        dispute_status,
    ) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)

        outcome = await orchestrator.resolve_dispute(
            dispute_id, resolution, "Reviewed delivery and chat history", admin
        )

        assert outcome.complete
        assert outcome.escrow.status == escrow_status
        assert outcome.escrow.resolution == resolution
        assert outcome.order.status == order_status
        assert outcome.dispute.status == dispute_status
        assert outcome.dispute.resolved_by == admin.identity

    @pytest.mark.asyncio
    async def test_split_refunds_buyer_and_cancels(
        self, orchestrator, admin, settlement, session_factory, sample_requirements
    ) -> None:
        order_id, dispute_id = await dispute_order(orchestrator, sample_requirements)

        outcome = await orchestrator.resolve_dispute(
            dispute_id, "split", "Half the sections are missing", admin
        )

        assert outcome.order.status == OrderStatus.CANCELLED
        key, legs, _ = settlement.transfers[-1]
        assert key == f"{outcome.escrow.id}:resolve:split"
        assert [(leg.to_account, leg.amount) for leg in legs] == [(BUYER_WALLET, 100_000_000)]
        async with session_factory() as session:
            stats = await SideEffectRepository(session).find_by(
                order_id=order_id, kind=SideEffectKind.SELLER_STATS.value
            )
        assert stats == []

    @pytest.mark.asyncio
    async def test_resolution_happens_once(
        self, orchestrator, admin, settlement, sample_requirements
    ) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)
        await orchestrator.resolve_dispute(dispute_id, "refund_buyer", "No usable delivery", admin)

        with pytest.raises(ConflictError):
            await orchestrator.resolve_dispute(
                dispute_id, "pay_seller", "Second thoughts here", admin
            )
        assert len(settlement.transfers) == 1

    @pytest.mark.asyncio
    async def test_failed_settlement_leaves_dispute_open(
        self, session_factory, settings, seller, admin, sample_requirements
    ) -> None:
        broke = SimulatedSettlementService(custody_balance=1)
        orchestrator = TransactionOrchestrator(session_factory, broke, settings=settings)
        order_id, dispute_id = await dispute_order(orchestrator, sample_requirements)

        with pytest.raises(InsufficientFundsError):
            await orchestrator.resolve_dispute(
                dispute_id, "refund_buyer", "No usable delivery", admin
            )

        dispute = await orchestrator.get_dispute(dispute_id)
        order = await orchestrator.get_order(order_id)
        escrow = await orchestrator.get_escrow(order.escrow_id)
        assert dispute.status == DisputeStatus.OPEN
        assert order.status == OrderStatus.DISPUTED
        assert escrow.status == EscrowStatus.DISPUTED

        # custody topped up: the retry goes through
        broke.custody_balance = None
        outcome = await orchestrator.resolve_dispute(
            dispute_id, "refund_buyer", "No usable delivery", admin
        )
        assert outcome.complete
        assert outcome.dispute.status == DisputeStatus.RESOLVED_BUYER

    @pytest.mark.asyncio
    async def test_only_admins_resolve(self, orchestrator, admin, sample_requirements) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)
        with pytest.raises(RoleNotPermittedError):
            await orchestrator.resolve_dispute(
                dispute_id, "refund_buyer", "I want my money", BUYER
            )
        with pytest.raises(ValidationError):
            await orchestrator.resolve_dispute(dispute_id, "refund_buyer", "short", admin)

    @pytest.mark.asyncio
    async def test_admin_queue_and_review(self, orchestrator, admin, sample_requirements) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)

        queue = await orchestrator.list_open_disputes()
        assert [d.id for d in queue] == [dispute_id]

        reviewed = await orchestrator.start_review(dispute_id, admin)
        assert reviewed.dispute.status == DisputeStatus.UNDER_REVIEW

        with pytest.raises(RoleNotPermittedError):
            await orchestrator.start_review(dispute_id, SYSTEM)


class TestDisputeWithdrawal:
    @pytest.mark.asyncio
    async def test_buyer_withdrawal_pays_seller(
        self, orchestrator, settlement, sample_requirements
    ) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)

        outcome = await orchestrator.cancel_dispute(dispute_id, BUYER)

        assert outcome.complete
        assert outcome.dispute.status == DisputeStatus.CANCELLED
        assert outcome.escrow.status == EscrowStatus.RELEASED
        assert outcome.order.status == OrderStatus.COMPLETED
        assert len(settlement.transfers) == 1

    @pytest.mark.asyncio
    async def test_only_the_buyer_withdraws(self, orchestrator, admin, sample_requirements) -> None:
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)
        with pytest.raises(AuthorizationError):
            await orchestrator.cancel_dispute(dispute_id, STRANGER)
        with pytest.raises(RoleNotPermittedError):
            await orchestrator.cancel_dispute(dispute_id, admin)

    @pytest.mark.asyncio
    async def test_no_withdrawal_after_arbitration(
        self, session_factory, settlement, settings, seller, sample_requirements
    ) -> None:
        orchestrator = TransactionOrchestrator(
            session_factory,
            settlement,
            advisor=StubAdvisor(AiRecommendation.REFUND_BUYER, 60),
            settings=settings,
        )
        _, dispute_id = await dispute_order(orchestrator, sample_requirements)
        await orchestrator.request_arbitration(dispute_id, SYSTEM)

        with pytest.raises(InvalidStateTransitionError):
            await orchestrator.cancel_dispute(dispute_id, BUYER)
        assert settlement.transfers == []


# ---------------------------------------------------------------------------
# Auto-release sweep
# ---------------------------------------------------------------------------


class TestAutoReleaseSweep:
    @pytest.mark.asyncio
    async def test_sweep_releases_once(self, orchestrator, settlement, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)

        first = await orchestrator.run_auto_release_sweep(now=_later())
        second = await orchestrator.run_auto_release_sweep(now=_later())

        assert first.completed_orders == [order_id]
        assert len(first.released) == 1
        assert second.released == []
        assert len(settlement.transfers) == 1
        assert (await orchestrator.get_order(order_id)).status == OrderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_sweep_waits_for_deadline(
        self, orchestrator, settlement, sample_requirements
    ) -> None:
        await deliver_order(orchestrator, sample_requirements)
        report = await orchestrator.run_auto_release_sweep(now=_later(hours=100))
        assert report.released == []
        assert settlement.transfers == []

    @pytest.mark.asyncio
    async def test_disputed_escrows_are_skipped(
        self, orchestrator, settlement, sample_requirements
    ) -> None:
        await dispute_order(orchestrator, sample_requirements)
        report = await orchestrator.run_auto_release_sweep(now=_later())
        assert report.released == []
        assert settlement.transfers == []

    @pytest.mark.asyncio
    async def test_undelivered_order_released_but_not_completed(
        self, orchestrator, sample_requirements
    ) -> None:
        order_id = await place_paid_order(orchestrator, sample_requirements)

        report = await orchestrator.run_auto_release_sweep(now=_later())

        assert len(report.released) == 1
        assert report.completed_orders == []
        assert (await orchestrator.get_order(order_id)).status == OrderStatus.PAID

    @pytest.mark.asyncio
    async def test_failed_release_reported(
        self, session_factory, settings, seller, sample_requirements
    ) -> None:
        broke = SimulatedSettlementService(custody_balance=1)
        orchestrator = TransactionOrchestrator(session_factory, broke, settings=settings)
        order_id = await deliver_order(orchestrator, sample_requirements)

        report = await orchestrator.run_auto_release_sweep(now=_later())

        assert len(report.failures) == 1
        assert (await orchestrator.get_order(order_id)).status == OrderStatus.DELIVERED


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_full_history(self, orchestrator, sample_requirements) -> None:
        order_id = await deliver_order(orchestrator, sample_requirements)
        await orchestrator.accept_delivery(order_id, BUYER)

        events = await orchestrator.get_order_events(order_id)

        assert [e.event_type for e in events] == [
            EventType.ORDER_CREATED,
            EventType.ESCROW_CREATED,
            EventType.ESCROW_FUNDED,
            EventType.ORDER_TRANSITIONED,  # start_work
            EventType.DELIVERY_SUBMITTED,
            EventType.ORDER_TRANSITIONED,  # deliver
            EventType.ESCROW_RELEASED,
            EventType.ORDER_TRANSITIONED,  # accept
        ]
