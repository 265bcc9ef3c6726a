"""
Inventory ledger.

WHAT: Vendor-controlled product list with stock, prices and floor prices per session
WHY: Stock must never go negative and the cart must never exceed stock
HOW: Validate, mutate in memory, then broadcast role-specific inventory views synchronously
"""

from typing import Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.session_store import SessionStore
from ..models.cart import CartLineStatus
from ..models.inventory import Product
from ..models.session import Role, Session
from ..realtime.hub import Broadcaster
from ..utils.exceptions import (
    CartLineLockedError,
    FloorPriceNotSetError,
    ProductNotFoundError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.numbers import parse_finite

logger = get_logger(__name__)


def _field_errors(exc: PydanticValidationError, prefix: str = "") -> list[dict]:
    return [
        {"loc": prefix + ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def parse_products(raw_products: Iterable[Mapping | Product]) -> list[Product]:
    """
    Validate a batch of products.

    Raises:
        ValidationError: Any product is invalid or ids repeat within the batch
    """
    products: list[Product] = []
    errors: list[dict] = []
    for index, raw in enumerate(raw_products or []):
        if isinstance(raw, Product):
            products.append(raw.model_copy())
            continue
        try:
            products.append(Product.model_validate(raw))
        except PydanticValidationError as e:
            errors.extend(_field_errors(e, prefix=f"products.{index}."))
    if errors:
        raise ValidationError("Invalid product data", field_errors=errors)

    seen: set[str] = set()
    for product in products:
        if product.id in seen:
            raise ValidationError(f"Duplicate product id in batch: {product.id}")
        seen.add(product.id)
    return products


def parse_floor_prices(floor_prices: Optional[Mapping]) -> dict[str, float]:
    """Validate a product_id -> floor price map."""
    parsed: dict[str, float] = {}
    for product_id, value in (floor_prices or {}).items():
        price = parse_finite(value, f"Floor price for {product_id}")
        if price <= 0:
            raise ValidationError(f"Floor price for {product_id} must be positive")
        parsed[str(product_id)] = price
    return parsed


def _require_non_negative(value, label: str) -> float:
    number = parse_finite(value, label)
    if number < 0:
        raise ValidationError(f"{label} cannot be negative")
    return number


class InventoryLedger:
    """
    Per-session product list.

    Every vendor mutation is authorized by role token, applied in memory and
    then broadcast before anything else is awaited.
    """

    def __init__(self, store: SessionStore, broadcaster: Broadcaster):
        self.store = store
        self.broadcaster = broadcaster

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    @staticmethod
    def require_product(session: Session, product_id: str) -> Product:
        product = session.products.get(product_id)
        if product is None:
            raise ProductNotFoundError(session.code, product_id)
        return product

    def floor_price_of(self, session: Session, product_id: str) -> float:
        """Floor price of a product; never defaulted."""
        product = self.require_product(session, product_id)
        if product.floor_price is None:
            logger.error(f"[{session.code}] Floor price missing for {product_id}")
            raise FloorPriceNotSetError(session.code, product_id)
        return product.floor_price

    def get_products(self, code: str, role: Role) -> list[dict]:
        session = self.store.require_live(code)
        return self._product_views(session, role)

    @staticmethod
    def _product_views(session: Session, role: Role) -> list[dict]:
        if role is Role.VENDOR:
            return [p.vendor_view() for p in session.products.values()]
        return [p.customer_view() for p in session.products.values()]

    # ------------------------------------------------------------------ #
    # Vendor operations
    # ------------------------------------------------------------------ #

    def set_inventory(
        self,
        code: str,
        token: str,
        products: Iterable[Mapping | Product],
        floor_prices: Optional[Mapping] = None,
    ) -> list[Product]:
        """
        Replace the product list and (re)initialize floor prices.

        Floor prices come from the map when given, otherwise from each product.
        Cart lines for products that shrink or disappear are force-shrunk.
        """
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)

        parsed = parse_products(products)
        floors = parse_floor_prices(floor_prices)
        for product in parsed:
            if product.id in floors:
                product.floor_price = floors[product.id]
        if not floors and not any(p.floor_price for p in parsed):
            logger.warning(f"[{session.code}] Inventory set without floor prices")

        new_stock = {p.id: p.stock for p in parsed}
        self._check_locked_lines(session, new_stock)

        session.products = {p.id: p for p in parsed}
        logger.info(f"[{session.code}] Inventory replaced: {len(parsed)} products")

        shrinks = self._shrink_cart_to_stock(session)
        self.broadcast_inventory(session)
        self._emit_shrinks(session, shrinks)
        return list(session.products.values())

    def append_products(
        self,
        code: str,
        token: str,
        new_products: Iterable[Mapping | Product],
        new_floor_prices: Optional[Mapping] = None,
    ) -> list[Product]:
        """Merge products into an active session without touching cart or negotiations."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)

        parsed = parse_products(new_products)
        floors = parse_floor_prices(new_floor_prices)
        clashes = [p.id for p in parsed if p.id in session.products]
        if clashes:
            raise ValidationError(f"Products already in inventory: {', '.join(clashes)}")

        for product in parsed:
            if product.id in floors:
                product.floor_price = floors[product.id]
            session.products[product.id] = product

        logger.info(f"[{session.code}] Appended {len(parsed)} products (total {len(session.products)})")
        self.broadcast_inventory(session)
        return parsed

    def edit_price(self, code: str, token: str, product_id: str, new_price) -> Product:
        """Change a product's list price; unnegotiated cart lines follow it."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        product = self.require_product(session, product_id)

        price = _require_non_negative(new_price, "Price")
        if price == 0:
            raise ValidationError("Price must be positive")

        product.vendor_price = price
        repriced = []
        for line in session.cart.values():
            if line.product_id == product_id and line.status == CartLineStatus.ADDED and not line.locked_by:
                line.agreed_price = price
                repriced.append(line.product_id)

        logger.info(f"[{session.code}] Vendor updated price: {product.name} -> {price}")
        self.broadcast_inventory(session)
        if repriced:
            self.broadcaster.publish(session.code, "cart-updated", session.cart_snapshot(), "all")
        return product

    def edit_stock(self, code: str, token: str, product_id: str, new_quantity) -> Product:
        """Set a product's stock; a reduction below the cart quantity shrinks the cart line."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        product = self.require_product(session, product_id)

        quantity = _require_non_negative(new_quantity, "Stock")
        self._check_locked_lines(session, {product_id: quantity})

        previous = product.stock
        product.stock = quantity
        logger.info(f"[{session.code}] Stock of {product.name}: {previous:g} -> {quantity:g}")

        shrinks = self._shrink_cart_to_stock(session)
        self.broadcast_inventory(session)
        self._emit_shrinks(session, shrinks)
        return product

    def update_floor_prices(self, code: str, token: str, floor_prices: Mapping) -> dict[str, float]:
        """Merge new floor prices for known products."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        floors = parse_floor_prices(floor_prices)
        for product_id in floors:
            self.require_product(session, product_id)
        for product_id, price in floors.items():
            session.products[product_id].floor_price = price
        logger.info(f"[{session.code}] Floor prices updated for {len(floors)} products")
        self.broadcaster.publish(
            session.code,
            "floor-prices-updated",
            {"floor_prices": {pid: p.floor_price for pid, p in session.products.items()}},
            "vendor",
        )
        return floors

    # ------------------------------------------------------------------ #
    # Settlement support
    # ------------------------------------------------------------------ #

    def deduct_stock(self, session: Session, product_id: str, quantity: float) -> float:
        """
        Deduct sold quantity, clamped at zero. Caller broadcasts the inventory.

        Returns:
            Stock after deduction
        """
        product = session.products.get(product_id)
        if product is None:
            logger.warning(f"[{session.code}] Sold product {product_id} no longer in inventory")
            return 0.0
        before = product.stock
        product.stock = max(0.0, round(product.stock - quantity, 3))
        if before - quantity < 0:
            logger.warning(
                f"[{session.code}] Stock of {product_id} clamped at zero (had {before:g}, sold {quantity:g})"
            )
        shrinks = self._shrink_cart_to_stock(session)
        self._emit_shrinks(session, shrinks)
        return product.stock

    def broadcast_inventory(self, session: Session):
        """Send each party its view of the product list."""
        self.broadcaster.publish(
            session.code, "inventory-updated", {"products": self._product_views(session, Role.VENDOR)}, "vendor"
        )
        self.broadcaster.publish(
            session.code, "inventory-updated", {"products": self._product_views(session, Role.CUSTOMER)}, "customer"
        )

    # ------------------------------------------------------------------ #
    # Cart consistency
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_locked_lines(session: Session, new_stock: Mapping[str, float]):
        for line in session.cart.values():
            if not line.locked_by:
                continue
            if line.quantity > new_stock.get(line.product_id, 0.0):
                raise CartLineLockedError(line.product_id, line.locked_by)

    @staticmethod
    def _shrink_cart_to_stock(session: Session) -> list[dict]:
        """Clamp cart lines to current stock. Returns one notice per shrunk line."""
        notices = []
        for product_id, line in list(session.cart.items()):
            product = session.products.get(product_id)
            available = product.stock if product else 0.0
            if line.quantity <= available:
                continue
            previous = line.quantity
            notices.append({
                "product_id": product_id,
                "product_name": line.name,
                "new_stock": available,
                "current_cart_quantity": previous,
                "adjusted_quantity": available,
            })
            if available <= 0:
                del session.cart[product_id]
            else:
                line.quantity = available
            logger.info(f"[{session.code}] Cart line {product_id} shrunk from {previous:g} to {available:g}")
        return notices

    def _emit_shrinks(self, session: Session, notices: list[dict]):
        for notice in notices:
            self.broadcaster.publish(session.code, "stock-reduced", notice, "customer")
        if notices:
            self.broadcaster.publish(session.code, "customer-cart-updated", session.cart_snapshot(), "vendor")
