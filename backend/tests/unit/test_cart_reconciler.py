"""
Unit tests for the cart reconciler.

WHAT: Test add/set/remove/sync against live stock and locked lines
WHY: Cart quantity must never exceed stock, checked on every mutation
HOW: Real ledger and hub; assert cart state and vendor-only broadcasts
"""

import pytest

from mandi.models.cart import CartLineStatus
from mandi.models.session import Role
from mandi.realtime.hub import payload_of
from mandi.utils.exceptions import (
    CartLineLockedError,
    InsufficientStockError,
    ProductNotFoundError,
    UnauthorizedRoleError,
    ValidationError,
)
from tests.fixtures.marketplace import open_session


@pytest.mark.unit
class TestAddItem:

    def test_add_then_merge(self, live):
        cart = live.runtime.cart
        cart.add_item(live.code, live.customer_token, "tomato", 1.5)
        line = cart.add_item(live.code, live.customer_token, "tomato", 2)

        assert line.quantity == 3.5
        assert line.original_price == 50
        assert line.agreed_price == 50
        assert line.status == CartLineStatus.ADDED
        assert live.session.cart_total() == 175

    def test_add_beyond_stock_is_rejected_with_actionable_details(self, runtime):
        """Cart holds 2kg of a 2kg product; adding 1kg more fails with stock 2, cart 2."""
        live = open_session(runtime, products=[
            {"id": "brinjal", "name": "Brinjal", "market_price": 40, "vendor_price": 40, "floor_price": 25, "stock": 2},
        ])
        runtime.cart.add_item(live.code, live.customer_token, "brinjal", 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            runtime.cart.add_item(live.code, live.customer_token, "brinjal", 1)

        details = exc_info.value.details
        assert details["available_stock"] == 2
        assert details["current_cart_quantity"] == 2
        assert details["requested"] == 1
        assert live.session.cart["brinjal"].quantity == 2

    def test_unknown_product(self, live):
        with pytest.raises(ProductNotFoundError):
            live.runtime.cart.add_item(live.code, live.customer_token, "durian", 1)
        assert live.session.cart == {}

    @pytest.mark.parametrize("quantity", [0, -1, "lots", None, "nan", "inf", float("nan"), float("-inf")])
    def test_bad_quantity(self, live, quantity):
        with pytest.raises(ValidationError):
            live.runtime.cart.add_item(live.code, live.customer_token, "tomato", quantity)
        assert live.session.cart == {}

    @pytest.mark.parametrize("quantity", ["nan", float("nan"), "inf"])
    def test_non_finite_quantity_does_not_touch_existing_line(self, live, quantity):
        cart = live.runtime.cart
        cart.add_item(live.code, live.customer_token, "tomato", 2)

        with pytest.raises(ValidationError):
            cart.add_item(live.code, live.customer_token, "tomato", quantity)
        with pytest.raises(ValidationError):
            cart.set_quantity(live.code, live.customer_token, "tomato", quantity)

        assert live.session.cart["tomato"].quantity == 2
        with pytest.raises(InsufficientStockError):
            cart.add_item(live.code, live.customer_token, "tomato", 9)

    def test_vendor_cannot_fill_the_cart(self, live):
        with pytest.raises(UnauthorizedRoleError):
            live.runtime.cart.add_item(live.code, live.vendor_token, "tomato", 1)

    def test_broadcast_goes_to_vendor_only(self, live):
        before = live.runtime.hub.last_seq(live.code)
        live.runtime.cart.add_item(live.code, live.customer_token, "tomato", 1)

        assert live.names(Role.VENDOR, since=before) == ["customer-cart-updated"]
        assert live.names(Role.CUSTOMER, since=before) == []
        snapshot = payload_of(live.events(Role.VENDOR), "customer-cart-updated")
        assert snapshot["cart"][0]["product_id"] == "tomato"
        assert snapshot["cart_total"] == 50


@pytest.mark.unit
class TestSetQuantity:

    def test_set_quantity_creates_and_updates(self, live):
        cart = live.runtime.cart
        cart.set_quantity(live.code, live.customer_token, "onion", 2)
        cart.set_quantity(live.code, live.customer_token, "onion", 4)
        assert live.session.cart["onion"].quantity == 4

    def test_set_quantity_above_stock(self, live):
        live.runtime.cart.set_quantity(live.code, live.customer_token, "onion", 2)
        with pytest.raises(InsufficientStockError) as exc_info:
            live.runtime.cart.set_quantity(live.code, live.customer_token, "onion", 6)
        assert exc_info.value.details["current_cart_quantity"] == 2
        assert live.session.cart["onion"].quantity == 2

    def test_zero_removes_line(self, live):
        cart = live.runtime.cart
        cart.set_quantity(live.code, live.customer_token, "onion", 2)
        assert cart.set_quantity(live.code, live.customer_token, "onion", 0) is None
        assert "onion" not in live.session.cart

    def test_set_quantity_equal_to_stock(self, live):
        line = live.runtime.cart.set_quantity(live.code, live.customer_token, "onion", 5)
        assert line.quantity == 5


@pytest.mark.unit
class TestRemoveItem:

    def test_remove(self, live):
        cart = live.runtime.cart
        cart.add_item(live.code, live.customer_token, "tomato", 1)
        assert cart.remove_item(live.code, live.customer_token, "tomato") is True
        assert cart.remove_item(live.code, live.customer_token, "tomato") is False

    def test_remove_unknown_product(self, live):
        with pytest.raises(ProductNotFoundError):
            live.runtime.cart.remove_item(live.code, live.customer_token, "durian")


@pytest.mark.unit
class TestSyncCart:

    def test_sync_replaces_cart(self, live):
        cart = live.runtime.cart
        cart.add_item(live.code, live.customer_token, "tomato", 1)

        lines = cart.sync_cart(live.code, live.customer_token, [{"product_id": "onion", "quantity": 3}])

        assert [line.product_id for line in lines] == ["onion"]
        assert set(live.session.cart) == {"onion"}

    def test_sync_is_all_or_nothing(self, live):
        cart = live.runtime.cart
        cart.add_item(live.code, live.customer_token, "tomato", 1)

        with pytest.raises(InsufficientStockError):
            cart.sync_cart(
                live.code,
                live.customer_token,
                [{"product_id": "tomato", "quantity": 2}, {"product_id": "onion", "quantity": 50}],
            )
        assert live.session.cart["tomato"].quantity == 1
        assert "onion" not in live.session.cart

    def test_sync_merges_repeated_products(self, live):
        with pytest.raises(InsufficientStockError):
            live.runtime.cart.sync_cart(
                live.code,
                live.customer_token,
                [{"product_id": "onion", "quantity": 3}, {"product_id": "onion", "quantity": 3}],
            )

    def test_sync_invalid_line(self, live):
        with pytest.raises(ValidationError):
            live.runtime.cart.sync_cart(live.code, live.customer_token, [{"product_id": "onion", "quantity": 0}])

    def test_sync_rejects_nan_quantity(self, live):
        live.runtime.cart.add_item(live.code, live.customer_token, "tomato", 2)
        with pytest.raises(ValidationError):
            live.runtime.cart.sync_cart(live.code, live.customer_token, [{"product_id": "tomato", "quantity": "nan"}])
        assert live.session.cart["tomato"].quantity == 2


@pytest.mark.unit
class TestLockedLines:

    @pytest.fixture
    def locked(self, live):
        live.runtime.cart.add_item(live.code, live.customer_token, "tomato", 2)
        live.runtime.settlement.initiate_cash_settlement(live.code, live.customer_token)
        return live

    def test_locked_line_rejects_changes(self, locked):
        cart = locked.runtime.cart
        with pytest.raises(CartLineLockedError):
            cart.add_item(locked.code, locked.customer_token, "tomato", 1)
        with pytest.raises(CartLineLockedError):
            cart.set_quantity(locked.code, locked.customer_token, "tomato", 1)
        with pytest.raises(CartLineLockedError):
            cart.remove_item(locked.code, locked.customer_token, "tomato")
        with pytest.raises(CartLineLockedError):
            cart.sync_cart(locked.code, locked.customer_token, [])
        assert locked.session.cart["tomato"].quantity == 2

    def test_stock_cut_below_locked_line_is_rejected(self, locked):
        with pytest.raises(CartLineLockedError):
            locked.runtime.ledger.edit_stock(locked.code, locked.vendor_token, "tomato", 1)
        assert locked.session.products["tomato"].stock == 10


@pytest.mark.unit
class TestStockInvariant:

    def test_cart_never_exceeds_stock(self, live):
        """Interleave cart mutations with stock edits and check the invariant after each step."""
        runtime = live.runtime
        steps = [
            lambda: runtime.cart.add_item(live.code, live.customer_token, "onion", 3),
            lambda: runtime.ledger.edit_stock(live.code, live.vendor_token, "onion", 2.5),
            lambda: runtime.cart.add_item(live.code, live.customer_token, "onion", 1),
            lambda: runtime.ledger.edit_stock(live.code, live.vendor_token, "onion", 6),
            lambda: runtime.cart.set_quantity(live.code, live.customer_token, "onion", 6),
            lambda: runtime.ledger.edit_stock(live.code, live.vendor_token, "onion", 0.5),
            lambda: runtime.cart.set_quantity(live.code, live.customer_token, "onion", 1),
        ]
        for step in steps:
            try:
                step()
            except InsufficientStockError:
                pass
            for line in live.session.cart.values():
                assert line.quantity <= live.session.products[line.product_id].stock
