"""
Settlement coordinator.

WHAT: Turns the agreed cart into a sale through cash confirmation or a payment gateway
WHY: Stock is deducted exactly once per payment reference, never below zero
HOW: Lock cart lines at initiation, deduct on confirmation/verification, remember completed references
"""

import secrets
from typing import Optional

from ..core.session_store import SessionStore
from ..models.cart import CartLineStatus
from ..models.session import Role, Session
from ..models.settlement import PendingSettlement, SaleReceipt, SettlementLine, SettlementMethod
from ..realtime.hub import Broadcaster
from ..utils.exceptions import (
    ExternalServiceError,
    InsufficientStockError,
    PaymentGatewayError,
    PaymentVerificationError,
    SettlementNotFoundError,
    SettlementPendingError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.numbers import parse_finite
from .cart_reconciler import CartReconciler
from .external_call import ExternalCallPolicy
from .inventory_ledger import InventoryLedger
from .payment_gateway import GatewayOrder, PaymentGateway

logger = get_logger(__name__)

TOTAL_TOLERANCE = 0.01


def _new_payment_ref() -> str:
    return f"PAY-{secrets.token_hex(6).upper()}"


class SettlementCoordinator:
    """
    Cash and gateway settlement for a session's cart.

    A session holds at most one pending settlement. Its lines are locked
    (status final) until the payment completes or is rejected.
    """

    def __init__(
        self,
        store: SessionStore,
        ledger: InventoryLedger,
        cart: CartReconciler,
        gateway: PaymentGateway,
        broadcaster: Broadcaster,
        policy: Optional[ExternalCallPolicy] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.cart = cart
        self.gateway = gateway
        self.broadcaster = broadcaster
        self.policy = policy or ExternalCallPolicy()

    # ------------------------------------------------------------------ #
    # Shared steps
    # ------------------------------------------------------------------ #

    def _lock_cart(self, session: Session, method: SettlementMethod, client_total=None) -> PendingSettlement:
        """Validate the cart and lock its lines under a new payment reference."""
        if session.pending_settlements:
            existing = next(iter(session.pending_settlements))
            raise SettlementPendingError(existing)
        if not session.cart:
            raise ValidationError("Cart is empty")

        for line in session.cart.values():
            product = self.ledger.require_product(session, line.product_id)
            if line.quantity > product.stock:
                raise InsufficientStockError(line.product_id, line.quantity, product.stock, line.quantity)

        total = session.cart_total()
        if client_total is not None:
            claimed = parse_finite(client_total, "Total")
            if abs(claimed - total) > TOTAL_TOLERANCE:
                raise ValidationError(
                    f"Cart total mismatch: client {claimed:.2f}, server {total:.2f}",
                    field_errors=[{"loc": "total", "msg": f"expected {total:.2f}"}],
                )

        payment_ref = _new_payment_ref()
        pending = PendingSettlement(
            payment_ref=payment_ref,
            method=method,
            lines=[
                SettlementLine(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.agreed_price,
                )
                for line in session.cart.values()
            ],
            total=total,
            previous_statuses={pid: line.status for pid, line in session.cart.items()},
        )
        for line in session.cart.values():
            line.status = CartLineStatus.FINAL
            line.locked_by = payment_ref
        session.pending_settlements[payment_ref] = pending
        logger.info(f"[{session.code}] {method.value} settlement {payment_ref} initiated: total ₹{total:.2f}")
        return pending

    def _unlock_cart(self, session: Session, pending: PendingSettlement):
        session.pending_settlements.pop(pending.payment_ref, None)
        for product_id, line in session.cart.items():
            if line.locked_by == pending.payment_ref:
                line.locked_by = None
                line.status = pending.previous_statuses.get(product_id, CartLineStatus.ADDED)
        self.broadcaster.publish(session.code, "customer-cart-updated", session.cart_snapshot(), "vendor")

    def _complete(self, session: Session, pending: PendingSettlement) -> SaleReceipt:
        """Deduct stock and record the reference. Runs once per payment reference."""
        session.pending_settlements.pop(pending.payment_ref, None)
        session.completed_payment_refs.add(pending.payment_ref)

        for product_id in [pid for pid, line in session.cart.items() if line.locked_by == pending.payment_ref]:
            del session.cart[product_id]

        stock_after = {}
        for line in pending.lines:
            stock_after[line.product_id] = self.ledger.deduct_stock(session, line.product_id, line.quantity)

        receipt = SaleReceipt(
            payment_ref=pending.payment_ref,
            method=pending.method,
            lines=pending.lines,
            total=pending.total,
            stock_after=stock_after,
            gateway_order_id=pending.gateway_order_id,
        )
        session.sales.append(receipt)
        logger.info(f"[{session.code}] Sale {pending.payment_ref} completed: ₹{pending.total:.2f}, {len(pending.lines)} lines")

        self.ledger.broadcast_inventory(session)
        self.broadcaster.publish(session.code, "sale-completed", receipt.to_dict(), "vendor")
        self.broadcaster.publish(session.code, "payment-confirmed", receipt.to_dict(), "customer")
        self.broadcaster.publish(session.code, "customer-cart-updated", session.cart_snapshot(), "vendor")
        return receipt

    @staticmethod
    def _duplicate_receipt(session: Session, payment_ref: str) -> SaleReceipt:
        logger.warning(f"[{session.code}] Duplicate confirmation for {payment_ref} ignored")
        for sale in session.sales:
            if sale.payment_ref == payment_ref:
                return sale.model_copy(update={"duplicate": True})
        return SaleReceipt(payment_ref=payment_ref, method=SettlementMethod.CASH, duplicate=True)

    # ------------------------------------------------------------------ #
    # Cash
    # ------------------------------------------------------------------ #

    def initiate_cash_settlement(self, code: str, token: str, total=None) -> PendingSettlement:
        """Ask the vendor to confirm a cash payment for the whole cart. Nothing is deducted yet."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)
        pending = self._lock_cart(session, SettlementMethod.CASH, total)

        self.broadcaster.publish(
            session.code,
            "cash-payment-request",
            {**pending.to_dict(), "customer_language": session.customer_language},
            "vendor",
        )
        self.broadcaster.publish(
            session.code,
            "cash-payment-pending",
            {"payment_ref": pending.payment_ref, "total": pending.total},
            "customer",
        )
        return pending

    def confirm_cash_settlement(self, code: str, token: str, payment_ref: str) -> SaleReceipt:
        """
        Vendor confirms cash received.

        A reference that already completed returns a receipt flagged duplicate
        and changes nothing.
        """
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        if payment_ref in session.completed_payment_refs:
            return self._duplicate_receipt(session, payment_ref)

        pending = session.pending_settlements.get(payment_ref)
        if pending is None or pending.method != SettlementMethod.CASH:
            raise SettlementNotFoundError(payment_ref)
        return self._complete(session, pending)

    def reject_cash_settlement(self, code: str, token: str, payment_ref: str, reason: Optional[str] = None) -> PendingSettlement:
        """Vendor did not receive the cash; the cart lines unlock."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        pending = session.pending_settlements.get(payment_ref)
        if pending is None or pending.method != SettlementMethod.CASH:
            raise SettlementNotFoundError(payment_ref)

        self._unlock_cart(session, pending)
        logger.info(f"[{session.code}] Cash settlement {payment_ref} rejected: {reason or 'no reason given'}")
        self.broadcaster.publish(
            session.code,
            "cash-payment-rejected",
            {"payment_ref": payment_ref, "reason": reason},
            "customer",
        )
        return pending

    # ------------------------------------------------------------------ #
    # Gateway
    # ------------------------------------------------------------------ #

    async def initiate_gateway_settlement(self, code: str, token: str, total=None) -> tuple[PendingSettlement, GatewayOrder]:
        """
        Lock the cart and create a gateway order for it.

        Raises:
            PaymentGatewayError: Order creation failed; the cart is unlocked again
        """
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)
        pending = self._lock_cart(session, SettlementMethod.GATEWAY, total)
        self.broadcaster.publish(
            session.code,
            "gateway-payment-pending",
            {"payment_ref": pending.payment_ref, "total": pending.total},
            "vendor",
        )

        try:
            order = await self.policy.call(
                lambda: self.gateway.create_order(pending.total, pending.payment_ref),
                label="payment gateway",
            )
        except (ExternalServiceError, ValidationError) as e:
            if pending.payment_ref in session.pending_settlements:
                self._unlock_cart(session, pending)
                self.broadcaster.publish(
                    session.code,
                    "payment-failed",
                    {"payment_ref": pending.payment_ref, "reason": e.message},
                    "all",
                )
            if isinstance(e, PaymentGatewayError):
                raise
            raise PaymentGatewayError(e.message) from e

        if pending.payment_ref not in session.pending_settlements:
            logger.warning(f"[{session.code}] Settlement {pending.payment_ref} cancelled while creating order")
            raise SettlementNotFoundError(pending.payment_ref)

        pending.gateway_order_id = order.order_id
        self.broadcaster.publish(
            session.code,
            "gateway-order-created",
            {"payment_ref": pending.payment_ref, "order": order.to_dict()},
            "customer",
        )
        return pending, order

    async def verify_gateway_settlement(self, code: str, order_id: str, payment_id: str, signature: str) -> SaleReceipt:
        """
        Verify a gateway callback and complete the sale.

        Resolves against disconnected sessions too: a payment already made
        still has to deduct stock.
        """
        session = self.store.get(code)

        completed = next((s for s in session.sales if s.gateway_order_id == order_id), None)
        if completed is not None:
            return self._duplicate_receipt(session, completed.payment_ref)

        pending = self._pending_for_order(session, order_id)
        verified = await self.policy.call(
            lambda: self.gateway.verify(order_id, payment_id, signature),
            label="payment verification",
        )
        if not verified:
            logger.warning(f"[{session.code}] Signature check failed for order {order_id}")
            raise PaymentVerificationError(order_id)

        if pending.payment_ref in session.completed_payment_refs:
            return self._duplicate_receipt(session, pending.payment_ref)
        if pending.payment_ref not in session.pending_settlements:
            raise SettlementNotFoundError(pending.payment_ref)
        return self._complete(session, pending)

    @staticmethod
    def _pending_for_order(session: Session, order_id: str) -> PendingSettlement:
        for pending in session.pending_settlements.values():
            if pending.gateway_order_id and pending.gateway_order_id == order_id:
                return pending
        raise SettlementNotFoundError(order_id)
