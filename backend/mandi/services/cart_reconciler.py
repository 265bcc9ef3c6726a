"""
Cart reconciler.

WHAT: Server-side authoritative copy of the customer's cart
WHY: Cart quantity must never exceed live stock, checked on every mutation
HOW: Validate against the inventory ledger, mutate, then push the cart to the vendor
"""

from typing import Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.session_store import SessionStore
from ..models.cart import CartLineInput, CartLineItem, CartLineStatus
from ..models.negotiation import NegotiationStatus
from ..models.session import Role, Session
from ..realtime.hub import Broadcaster
from ..utils.exceptions import (
    CartLineLockedError,
    InsufficientStockError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.numbers import parse_finite
from .inventory_ledger import InventoryLedger

logger = get_logger(__name__)


def _positive_quantity(value, allow_zero: bool = False) -> float:
    quantity = parse_finite(value, "Quantity")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError("Quantity must be positive")
    return quantity


class CartReconciler:
    """
    Customer cart operations.

    All checks happen before any mutation, so a rejected call leaves the cart
    exactly as it was. Successful mutations are broadcast to the vendor only;
    the customer already holds the optimistic state.
    """

    def __init__(self, store: SessionStore, ledger: InventoryLedger, broadcaster: Broadcaster):
        self.store = store
        self.ledger = ledger
        self.broadcaster = broadcaster

    def _customer_session(self, code: str, token: str) -> Session:
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)
        return session

    @staticmethod
    def _ensure_unlocked(session: Session, product_id: str):
        line = session.cart.get(product_id)
        if line is not None and line.locked_by:
            raise CartLineLockedError(product_id, line.locked_by)

    @staticmethod
    def _pricing_for(session: Session, product_id: str, list_price: float) -> tuple[float, CartLineStatus]:
        """Unit price and status for a new line, honouring an accepted negotiation."""
        record = session.negotiations.get(product_id)
        if record and record.status == NegotiationStatus.ACCEPTED and record.final_price:
            return record.final_price, CartLineStatus.ACCEPTED
        return list_price, CartLineStatus.ADDED

    def _new_line(self, session: Session, product_id: str, quantity: float) -> CartLineItem:
        product = self.ledger.require_product(session, product_id)
        price, status = self._pricing_for(session, product_id, product.vendor_price)
        return CartLineItem(
            product_id=product_id,
            name=product.name,
            quantity=quantity,
            original_price=product.vendor_price,
            agreed_price=price,
            status=status,
        )

    def add_item(self, code: str, token: str, product_id: str, quantity) -> CartLineItem:
        """
        Add quantity of a product, merging with an existing line.

        Raises:
            ProductNotFoundError: Product is not in the inventory
            InsufficientStockError: Existing cart quantity plus request exceeds stock
        """
        session = self._customer_session(code, token)
        product = self.ledger.require_product(session, product_id)
        amount = _positive_quantity(quantity)
        self._ensure_unlocked(session, product_id)

        current = session.cart_quantity(product_id)
        if current + amount > product.stock:
            logger.info(
                f"[{session.code}] Add rejected for {product.name}: "
                f"requested {amount:g}, in cart {current:g}, stock {product.stock:g}"
            )
            raise InsufficientStockError(product_id, amount, product.stock, current)

        line = session.cart.get(product_id)
        if line is None:
            line = self._new_line(session, product_id, amount)
            session.cart[product_id] = line
        else:
            line.quantity = round(current + amount, 3)

        logger.info(f"[{session.code}] Cart: {product.name} now {line.quantity:g}kg")
        self._broadcast(session)
        return line

    def set_quantity(self, code: str, token: str, product_id: str, new_quantity) -> Optional[CartLineItem]:
        """Set a line's quantity; zero removes it, a missing line is created."""
        session = self._customer_session(code, token)
        product = self.ledger.require_product(session, product_id)
        quantity = _positive_quantity(new_quantity, allow_zero=True)
        self._ensure_unlocked(session, product_id)

        if quantity == 0:
            removed = session.cart.pop(product_id, None)
            if removed:
                logger.info(f"[{session.code}] Cart: {product.name} removed (quantity 0)")
                self._broadcast(session)
            return None

        if quantity > product.stock:
            raise InsufficientStockError(product_id, quantity, product.stock, session.cart_quantity(product_id))

        line = session.cart.get(product_id)
        if line is None:
            line = self._new_line(session, product_id, quantity)
            session.cart[product_id] = line
        else:
            line.quantity = quantity

        logger.info(f"[{session.code}] Cart: {product.name} set to {quantity:g}kg")
        self._broadcast(session)
        return line

    def remove_item(self, code: str, token: str, product_id: str) -> bool:
        """Remove a line. Unknown products are rejected; absent lines are a no-op."""
        session = self._customer_session(code, token)
        self.ledger.require_product(session, product_id)
        self._ensure_unlocked(session, product_id)

        removed = session.cart.pop(product_id, None)
        if removed is None:
            return False
        logger.info(f"[{session.code}] Cart: {removed.name} removed")
        self._broadcast(session)
        return True

    def sync_cart(self, code: str, token: str, lines: Iterable[Mapping]) -> list[CartLineItem]:
        """
        Replace the whole cart with the client's copy.

        Every line is validated first; nothing changes unless all of them pass.
        Locked lines cannot be dropped or resized by a sync.
        """
        session = self._customer_session(code, token)

        parsed: dict[str, float] = {}
        for index, raw in enumerate(lines or []):
            try:
                item = CartLineInput.model_validate(raw)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid cart line",
                    field_errors=[{"loc": f"cart.{index}", "msg": err.get("msg", "")} for err in e.errors()],
                )
            parsed[item.product_id] = parsed.get(item.product_id, 0.0) + item.quantity

        for product_id, quantity in parsed.items():
            product = self.ledger.require_product(session, product_id)
            if quantity > product.stock:
                raise InsufficientStockError(product_id, quantity, product.stock, session.cart_quantity(product_id))

        for product_id, line in session.cart.items():
            if line.locked_by and parsed.get(product_id) != line.quantity:
                raise CartLineLockedError(product_id, line.locked_by)

        new_cart: dict[str, CartLineItem] = {}
        for product_id, quantity in parsed.items():
            existing = session.cart.get(product_id)
            if existing is not None:
                existing.quantity = quantity
                new_cart[product_id] = existing
            else:
                new_cart[product_id] = self._new_line(session, product_id, quantity)
        session.cart = new_cart

        logger.info(f"[{session.code}] Cart synced: {len(new_cart)} lines, total {session.cart_total()}")
        self._broadcast(session)
        return list(new_cart.values())

    # ------------------------------------------------------------------ #
    # Negotiation hooks
    # ------------------------------------------------------------------ #

    def apply_agreed_price(self, session: Session, product_id: str, price: float) -> Optional[CartLineItem]:
        """Set the agreed price of a line after an accepted negotiation."""
        line = session.cart.get(product_id)
        if line is None or line.locked_by:
            return None
        line.agreed_price = price
        line.status = CartLineStatus.ACCEPTED
        logger.info(f"[{session.code}] Cart: {line.name} agreed at {price}")
        self._broadcast(session)
        return line

    def mark_rejected(self, session: Session, product_id: str) -> Optional[CartLineItem]:
        """Flag a line whose negotiation was rejected; it keeps its list price."""
        line = session.cart.get(product_id)
        if line is None or line.locked_by or line.status == CartLineStatus.ACCEPTED:
            return None
        line.status = CartLineStatus.REJECTED
        self._broadcast(session)
        return line

    def restore_list_price(self, session: Session, product_id: str) -> Optional[CartLineItem]:
        """Undo a negotiated price when the negotiation is reset."""
        line = session.cart.get(product_id)
        if line is None or line.locked_by or line.status == CartLineStatus.ADDED:
            return None
        product = session.products.get(product_id)
        line.agreed_price = product.vendor_price if product else line.original_price
        line.status = CartLineStatus.ADDED
        self._broadcast(session)
        return line

    def _broadcast(self, session: Session):
        self.broadcaster.publish(session.code, "customer-cart-updated", session.cart_snapshot(), "vendor")
