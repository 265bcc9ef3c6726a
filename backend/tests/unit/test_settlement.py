"""
Unit tests for the settlement coordinator.

WHAT: Test cash and gateway settlement against the cart and inventory
WHY: Stock must be deducted exactly once per payment reference
HOW: Live session fixture with the sandbox gateway; stub gateways for failures
"""

import httpx
import pytest

from mandi.core.runtime import MarketplaceRuntime
from mandi.models.cart import CartLineStatus
from mandi.models.session import Role
from mandi.models.settlement import SettlementMethod
from mandi.realtime.hub import payload_of
from mandi.services.external_call import ExternalCallPolicy
from mandi.utils.exceptions import (
    CartLineLockedError,
    PaymentGatewayError,
    PaymentVerificationError,
    SessionNotLiveError,
    SettlementNotFoundError,
    SettlementPendingError,
    UnauthorizedRoleError,
    ValidationError,
)
from tests.fixtures.marketplace import open_session


class FailingGateway:
    """Gateway whose order creation always fails."""

    name = "failing"

    def __init__(self, error: Exception):
        self.error = error
        self.attempts = 0

    async def create_order(self, amount, reference):
        self.attempts += 1
        raise self.error

    async def verify(self, order_id, payment_id, signature):
        return False

    async def close(self):
        return None


def fill_cart(live):
    live.runtime.cart.add_item(live.code, live.customer_token, "tomato", 2)
    live.runtime.cart.add_item(live.code, live.customer_token, "onion", 1)


@pytest.mark.unit
class TestCashSettlement:

    def test_initiate_locks_cart_without_deducting(self, live):
        fill_cart(live)

        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token, total=155)

        assert pending.method == SettlementMethod.CASH
        assert pending.total == 155
        assert pending.payment_ref.startswith("PAY-")
        assert live.session.products["tomato"].stock == 10
        assert all(line.locked_by == pending.payment_ref for line in live.session.cart.values())
        assert all(line.status == CartLineStatus.FINAL for line in live.session.cart.values())
        request = payload_of(live.events(Role.VENDOR), "cash-payment-request")
        assert request["payment_ref"] == pending.payment_ref
        assert payload_of(live.events(Role.CUSTOMER), "cash-payment-pending")["total"] == 155

    def test_confirm_deducts_stock_and_clears_cart(self, live):
        fill_cart(live)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

        receipt = live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, pending.payment_ref)

        assert receipt.duplicate is False
        assert receipt.stock_after == {"tomato": 8, "onion": 4}
        assert live.session.products["tomato"].stock == 8
        assert live.session.cart == {}
        assert live.session.sales == [receipt]
        assert payload_of(live.events(Role.VENDOR), "sale-completed")["payment_ref"] == pending.payment_ref
        assert payload_of(live.events(Role.CUSTOMER), "payment-confirmed")["total"] == 155

    def test_duplicate_confirmation_deducts_once(self, live):
        fill_cart(live)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, pending.payment_ref)
        sale_events = live.names().count("sale-completed")

        again = live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, pending.payment_ref)

        assert again.duplicate is True
        assert again.payment_ref == pending.payment_ref
        assert live.session.products["tomato"].stock == 8
        assert len(live.session.sales) == 1
        assert live.names().count("sale-completed") == sale_events

    def test_negotiated_price_is_charged(self, live):
        live.runtime.cart.add_item(live.code, live.customer_token, "tomato", 2)
        live.runtime.cart.apply_agreed_price(live.session, "tomato", 35)

        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token, total=70)

        assert pending.lines[0].unit_price == 35

    def test_reject_unlocks_cart(self, live):
        fill_cart(live)
        live.runtime.cart.apply_agreed_price(live.session, "tomato", 35)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

        live.runtime.settlement.reject_cash_settlement(live.code, live.vendor_token, pending.payment_ref, "Not received")

        assert live.session.pending_settlements == {}
        assert live.session.cart["tomato"].locked_by is None
        assert live.session.cart["tomato"].status == CartLineStatus.ACCEPTED
        assert live.session.cart["onion"].status == CartLineStatus.ADDED
        assert live.session.products["tomato"].stock == 10
        rejected = payload_of(live.events(Role.CUSTOMER), "cash-payment-rejected")
        assert rejected == {"payment_ref": pending.payment_ref, "reason": "Not received"}

        with pytest.raises(SettlementNotFoundError):
            live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, pending.payment_ref)

    def test_locked_lines_cannot_change(self, live):
        fill_cart(live)
        live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        with pytest.raises(CartLineLockedError):
            live.runtime.cart.set_quantity(live.code, live.customer_token, "tomato", 1)

    def test_one_pending_settlement_per_session(self, live):
        fill_cart(live)
        live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        with pytest.raises(SettlementPendingError):
            live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

    def test_total_mismatch(self, live):
        fill_cart(live)
        with pytest.raises(ValidationError) as exc_info:
            live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token, total=100)
        assert "mismatch" in exc_info.value.message
        assert live.session.pending_settlements == {}
        assert live.session.cart["tomato"].locked_by is None

    @pytest.mark.parametrize("total", ["nan", float("nan"), "inf"])
    def test_non_finite_total_rejected(self, live, total):
        fill_cart(live)
        with pytest.raises(ValidationError):
            live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token, total=total)
        assert live.session.pending_settlements == {}
        assert live.session.cart["tomato"].locked_by is None

    def test_empty_cart(self, live):
        with pytest.raises(ValidationError):
            live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

    def test_unknown_reference(self, live):
        with pytest.raises(SettlementNotFoundError):
            live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, "PAY-NOPE")

    def test_roles_are_enforced(self, live):
        fill_cart(live)
        with pytest.raises(UnauthorizedRoleError):
            live.runtime.settlement.initiate_cash_settlement(live.code, live.vendor_token)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        with pytest.raises(UnauthorizedRoleError):
            live.runtime.settlement.confirm_cash_settlement(live.code, live.customer_token, pending.payment_ref)


@pytest.mark.unit
class TestGatewaySettlement:

    @pytest.mark.asyncio
    async def test_order_created_for_cart_total(self, live):
        fill_cart(live)

        pending, order = await live.runtime.settlement.initiate_gateway_settlement(
            live.code, live.customer_token, total=155
        )

        assert order.amount == 155
        assert order.currency == "INR"
        assert order.reference == pending.payment_ref
        assert pending.gateway_order_id == order.order_id
        assert payload_of(live.events(Role.VENDOR), "gateway-payment-pending")["payment_ref"] == pending.payment_ref
        assert payload_of(live.events(Role.CUSTOMER), "gateway-order-created")["order"]["order_id"] == order.order_id

    @pytest.mark.asyncio
    async def test_verified_payment_completes_sale(self, live, payment_gateway):
        fill_cart(live)
        pending, order = await live.runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)
        signature = payment_gateway.sign(order.order_id, "pay_001")

        receipt = await live.runtime.settlement.verify_gateway_settlement(live.code, order.order_id, "pay_001", signature)

        assert receipt.method == SettlementMethod.GATEWAY
        assert receipt.gateway_order_id == order.order_id
        assert live.session.products["onion"].stock == 4
        assert pending.payment_ref in live.session.completed_payment_refs

    @pytest.mark.asyncio
    async def test_bad_signature_keeps_settlement_pending(self, live):
        fill_cart(live)
        pending, order = await live.runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)

        with pytest.raises(PaymentVerificationError):
            await live.runtime.settlement.verify_gateway_settlement(live.code, order.order_id, "pay_001", "forged")

        assert pending.payment_ref in live.session.pending_settlements
        assert live.session.products["tomato"].stock == 10

    @pytest.mark.asyncio
    async def test_duplicate_verification(self, live, payment_gateway):
        fill_cart(live)
        _, order = await live.runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)
        signature = payment_gateway.sign(order.order_id, "pay_001")
        await live.runtime.settlement.verify_gateway_settlement(live.code, order.order_id, "pay_001", signature)

        again = await live.runtime.settlement.verify_gateway_settlement(live.code, order.order_id, "pay_001", signature)

        assert again.duplicate is True
        assert live.session.products["tomato"].stock == 8
        assert len(live.session.sales) == 1

    @pytest.mark.asyncio
    async def test_verification_after_disconnect(self, live, payment_gateway):
        fill_cart(live)
        _, order = await live.runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)
        live.runtime.store.mark_disconnected(live.code, Role.CUSTOMER)

        receipt = await live.runtime.settlement.verify_gateway_settlement(
            live.code, order.order_id, "pay_001", payment_gateway.sign(order.order_id, "pay_001")
        )

        assert receipt.duplicate is False
        assert live.session.products["tomato"].stock == 8
        with pytest.raises(SessionNotLiveError):
            live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

    @pytest.mark.asyncio
    async def test_unknown_order(self, live):
        with pytest.raises(SettlementNotFoundError):
            await live.runtime.settlement.verify_gateway_settlement(live.code, "order_missing", "pay_001", "sig")

    @pytest.mark.asyncio
    async def test_cash_reference_is_not_a_gateway_order(self, live):
        fill_cart(live)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        with pytest.raises(SettlementNotFoundError):
            await live.runtime.settlement.verify_gateway_settlement(live.code, pending.payment_ref, "pay_001", "sig")


@pytest.mark.unit
class TestGatewayFailures:

    @pytest.mark.asyncio
    async def test_rejected_order_unlocks_cart(self, mock_llm):
        gateway = FailingGateway(PaymentGatewayError("HTTP 400: bad amount"))
        runtime = MarketplaceRuntime(provider=mock_llm, payment_gateway=gateway, policy=ExternalCallPolicy(timeout=1.0))
        live = open_session(runtime)
        fill_cart(live)

        with pytest.raises(PaymentGatewayError):
            await runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)

        assert gateway.attempts == 1
        assert live.session.pending_settlements == {}
        assert live.session.cart["tomato"].locked_by is None
        assert "payment-failed" in live.names(Role.CUSTOMER)
        assert "payment-failed" in live.names(Role.VENDOR)

    @pytest.mark.asyncio
    async def test_network_failure_is_retried_once(self, mock_llm):
        gateway = FailingGateway(httpx.ConnectError("connection refused"))
        runtime = MarketplaceRuntime(
            provider=mock_llm, payment_gateway=gateway, policy=ExternalCallPolicy(timeout=1.0, retries=1)
        )
        live = open_session(runtime)
        fill_cart(live)

        with pytest.raises(PaymentGatewayError) as exc_info:
            await runtime.settlement.initiate_gateway_settlement(live.code, live.customer_token)

        assert gateway.attempts == 2
        assert exc_info.value.code == "PAYMENT_GATEWAY_ERROR"
        assert live.session.pending_settlements == {}

        # Cart is usable again
        pending = runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        assert pending.total == 155


@pytest.mark.unit
class TestSettlementPayloads:

    def test_pending_payload_hides_previous_statuses(self, live):
        fill_cart(live)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)

        data = pending.to_dict()

        assert set(data) == {"payment_ref", "method", "lines", "total", "gateway_order_id", "created_at"}
        assert data["method"] == "cash"
        assert isinstance(data["created_at"], str)
        assert {line["product_id"]: line["line_total"] for line in data["lines"]} == {"tomato": 100, "onion": 55}

    def test_receipt_payload_is_json_ready(self, live):
        fill_cart(live)
        pending = live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        receipt = live.runtime.settlement.confirm_cash_settlement(live.code, live.vendor_token, pending.payment_ref)

        data = receipt.to_dict()

        assert data["method"] == "cash"
        assert data["total"] == 155
        assert data["duplicate"] is False
        assert data["stock_after"] == {"tomato": 8, "onion": 4}
        assert data["completed_at"].startswith(str(receipt.completed_at.date()))
        assert data["lines"][0]["line_total"] == data["lines"][0]["quantity"] * data["lines"][0]["unit_price"]
        sale = payload_of(live.events(Role.VENDOR), "sale-completed")
        assert sale == data
