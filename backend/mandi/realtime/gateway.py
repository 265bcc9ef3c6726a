"""
Realtime gateway.

WHAT: Translate inbound client events into core operations and route the results back out
WHY: The core stays transport-free; one place knows event names, payload shapes and error events
HOW: Dispatch table of event name -> handler; business errors become error events for the sender only
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from uuid import uuid4

from ..models.session import Role
from ..utils.exceptions import BusinessException, ValidationError
from ..utils.logger import get_logger
from .hub import SessionEventHub

if TYPE_CHECKING:
    from ..core.runtime import MarketplaceRuntime

logger = get_logger(__name__)

# Error event answered to the sender, by inbound event
ERROR_EVENTS = {
    "create-session": "session-error",
    "join-session": "session-error",
    "get-products": "session-error",
    "update-inventory": "inventory-error",
    "add-new-products": "inventory-error",
    "vendor-price-edit": "inventory-error",
    "vendor-stock-edit": "inventory-error",
    "update-floor-prices": "inventory-error",
    "cart-item-added": "cart-error",
    "cart-quantity-changed": "cart-error",
    "cart-item-removed": "cart-error",
    "cart-updated": "cart-error",
    "propose-price": "negotiation-error",
    "respond-negotiation": "negotiation-error",
    "respond-final-offer": "negotiation-error",
    "reset-negotiation": "negotiation-error",
    "send-custom-message": "message-error",
    "request-products": "message-error",
    "cash-payment-initiate": "payment-error",
    "cash-payment-confirm": "payment-error",
    "cash-payment-reject": "payment-error",
    "gateway-payment-initiate": "payment-error",
    "gateway-payment-verify": "payment-error",
}


@dataclass
class ConnectionContext:
    """One client connection and the session role it is bound to."""
    outbox: asyncio.Queue
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    session_code: Optional[str] = None
    role: Optional[Role] = None
    token: Optional[str] = None

    @property
    def bound(self) -> bool:
        return self.session_code is not None and self.role is not None


Handler = Callable[[ConnectionContext, dict], Awaitable[Any]]


def _require(data: dict, key: str) -> Any:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing field: {key}", field_errors=[{"loc": key, "msg": "field required"}])
    return value


class RealtimeGateway:
    """
    Session-scoped event surface over the marketplace core.

    Handlers never publish for the sender's benefit except through the hub,
    so a connection sees its own mutations in the same order as its peer.
    """

    def __init__(self, runtime: "MarketplaceRuntime"):
        self.runtime = runtime
        self.hub: SessionEventHub = runtime.hub
        self.connections: dict[str, ConnectionContext] = {}
        self.handlers: dict[str, Handler] = {
            "create-session": self._create_session,
            "join-session": self._join_session,
            "get-products": self._get_products,
            "update-inventory": self._update_inventory,
            "add-new-products": self._add_new_products,
            "vendor-price-edit": self._vendor_price_edit,
            "vendor-stock-edit": self._vendor_stock_edit,
            "update-floor-prices": self._update_floor_prices,
            "cart-item-added": self._cart_item_added,
            "cart-quantity-changed": self._cart_quantity_changed,
            "cart-item-removed": self._cart_item_removed,
            "cart-updated": self._cart_updated,
            "request-products": self._request_products,
            "propose-price": self._propose_price,
            "respond-negotiation": self._respond_negotiation,
            "respond-final-offer": self._respond_final_offer,
            "reset-negotiation": self._reset_negotiation,
            "send-custom-message": self._send_custom_message,
            "cash-payment-initiate": self._cash_payment_initiate,
            "cash-payment-confirm": self._cash_payment_confirm,
            "cash-payment-reject": self._cash_payment_reject,
            "gateway-payment-initiate": self._gateway_payment_initiate,
            "gateway-payment-verify": self._gateway_payment_verify,
        }

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    def connect(self) -> ConnectionContext:
        ctx = ConnectionContext(outbox=asyncio.Queue())
        self.connections[ctx.connection_id] = ctx
        logger.info(f"Connection opened: {ctx.connection_id}")
        return ctx

    def disconnect(self, ctx: ConnectionContext):
        """
        Tear down a connection.

        A bound party leaving marks the session disconnected and clears its
        negotiations; pending gateway settlements are left to their callbacks.
        """
        self.connections.pop(ctx.connection_id, None)
        if not ctx.bound:
            logger.info(f"Connection closed: {ctx.connection_id} (unbound)")
            return

        self.hub.unsubscribe(ctx.session_code, ctx.role, ctx.outbox)
        store = self.runtime.store
        try:
            session = store.get(ctx.session_code)
        except BusinessException:
            return
        if not session.is_live:
            return

        store.mark_disconnected(session.code, ctx.role)
        self.runtime.negotiation.clear_session(session)
        self.hub.publish(session.code, "user-disconnected", {"role": ctx.role.value}, ctx.role.counterpart.value)
        logger.info(f"Connection closed: {ctx.connection_id} ({ctx.role.value} of {session.code})")

    def _bind(self, ctx: ConnectionContext, session_code: str, role: Role, token: str):
        if ctx.bound:
            self.hub.unsubscribe(ctx.session_code, ctx.role, ctx.outbox)
        ctx.session_code = session_code
        ctx.role = role
        ctx.token = token
        self.hub.subscribe(session_code, role, ctx.outbox)
        if role is Role.VENDOR:
            self.runtime.store.get(session_code).vendor_connection = ctx.connection_id
        else:
            self.runtime.store.get(session_code).customer_connection = ctx.connection_id

    def _credentials(self, ctx: ConnectionContext, data: dict) -> tuple[str, Optional[str]]:
        """
        Session code and token for an event.

        A payload token re-binds the connection (reconnect); otherwise the
        token issued on this connection is used.
        """
        code = data.get("session_code") or ctx.session_code
        if not code:
            raise ValidationError("Missing field: session_code", field_errors=[{"loc": "session_code", "msg": "field required"}])
        code = self.runtime.store.normalize_code(code)
        token = data.get("token")
        if token:
            session = self.runtime.store.require_live(code)
            role = self.runtime.store.role_of(session, token)
            if role is not None and (ctx.session_code != code or ctx.role is not role):
                self._bind(ctx, code, role, token)
            return code, token
        if ctx.session_code and ctx.session_code != code:
            raise ValidationError(f"Connection is bound to session {ctx.session_code}")
        return code, ctx.token

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def handle_text(self, ctx: ConnectionContext, raw: str):
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            self._reply_error(ctx, "session-error", ValidationError("Frame is not valid JSON"))
            return
        await self.handle(ctx, frame)

    async def handle(self, ctx: ConnectionContext, frame: Any):
        """Run one inbound frame {"event": name, "data": {...}}."""
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            self._reply_error(ctx, "session-error", ValidationError("Frame must be an object with an event name"))
            return

        event = frame["event"]
        data = frame.get("data") or {}
        error_event = ERROR_EVENTS.get(event, "session-error")

        handler = self.handlers.get(event)
        if handler is None:
            self._reply_error(ctx, error_event, ValidationError(f"Unknown event: {event}"))
            return
        if not isinstance(data, dict):
            self._reply_error(ctx, error_event, ValidationError("Event data must be an object"))
            return

        try:
            await handler(ctx, data)
        except BusinessException as e:
            logger.info(f"{event} rejected for {ctx.connection_id}: {e.code} {e.message}")
            self._reply_error(ctx, error_event, e)
        except Exception as e:
            logger.exception(f"Unhandled error in {event} for {ctx.connection_id}: {e}")
            self.hub.reply(
                ctx.outbox,
                error_event,
                {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred", "details": None},
                ctx.session_code,
            )

    def _reply(self, ctx: ConnectionContext, event: str, data: dict):
        self.hub.reply(ctx.outbox, event, data, ctx.session_code)

    def _reply_error(self, ctx: ConnectionContext, event: str, error: BusinessException):
        self.hub.reply(ctx.outbox, event, error.to_payload(), ctx.session_code)

    # ------------------------------------------------------------------ #
    # Session
    # ------------------------------------------------------------------ #

    async def _create_session(self, ctx: ConnectionContext, data: dict):
        runtime = self.runtime
        session = runtime.store.create(
            vendor_language=data.get("vendor_language") or data.get("language"),
            location=data.get("location"),
            vendor_connection=ctx.connection_id,
        )
        self._bind(ctx, session.code, Role.VENDOR, session.vendor_token)
        self._reply(ctx, "session-created", {
            "session_code": session.code,
            "token": session.vendor_token,
            "role": Role.VENDOR.value,
            "vendor_language": session.vendor_language,
            "location": session.location,
        })
        if data.get("products"):
            runtime.ledger.set_inventory(session.code, session.vendor_token, data["products"], data.get("floor_prices"))

    async def _join_session(self, ctx: ConnectionContext, data: dict):
        code = _require(data, "session_code")
        session = self.runtime.store.join(
            code,
            customer_language=data.get("customer_language") or data.get("language"),
            customer_connection=ctx.connection_id,
        )
        self._bind(ctx, session.code, Role.CUSTOMER, session.customer_token)
        self._reply(ctx, "session-joined", {
            "session_code": session.code,
            "token": session.customer_token,
            "role": Role.CUSTOMER.value,
            "session": self.runtime.store.snapshot(session, Role.CUSTOMER),
        })
        self.hub.publish(
            session.code,
            "customer-joined",
            {"customer_language": session.customer_language},
            "vendor",
        )

    async def _get_products(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        session = self.runtime.store.require_live(code)
        role = self.runtime.store.role_of(session, token)
        if role is None:
            self.runtime.store.authorize(session, Role.CUSTOMER, token)
        self._reply(ctx, "products", {"products": self.runtime.ledger.get_products(code, role)})

    # ------------------------------------------------------------------ #
    # Inventory
    # ------------------------------------------------------------------ #

    async def _update_inventory(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        products = _require(data, "products")
        self.runtime.ledger.set_inventory(code, token, products, data.get("floor_prices"))

    async def _add_new_products(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        products = _require(data, "products")
        self.runtime.ledger.append_products(code, token, products, data.get("floor_prices"))

    async def _vendor_price_edit(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.ledger.edit_price(code, token, _require(data, "product_id"), _require(data, "new_price"))

    async def _vendor_stock_edit(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.ledger.edit_stock(code, token, _require(data, "product_id"), _require(data, "new_quantity"))

    async def _update_floor_prices(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.ledger.update_floor_prices(code, token, _require(data, "floor_prices"))

    # ------------------------------------------------------------------ #
    # Cart
    # ------------------------------------------------------------------ #

    async def _cart_item_added(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.cart.add_item(code, token, _require(data, "product_id"), _require(data, "quantity"))

    async def _cart_quantity_changed(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.cart.set_quantity(code, token, _require(data, "product_id"), _require(data, "quantity"))

    async def _cart_item_removed(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.cart.remove_item(code, token, _require(data, "product_id"))

    async def _cart_updated(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        cart = data.get("cart")
        if not isinstance(cart, list):
            raise ValidationError("cart must be a list of {product_id, quantity}")
        self.runtime.cart.sync_cart(code, token, cart)

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def _request_products(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        products = _require(data, "products")
        if not isinstance(products, list):
            raise ValidationError("products must be a list of names")
        self.runtime.relay.request_products(code, token, products)

    async def _send_custom_message(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        if ctx.role is None:
            session = self.runtime.store.require_live(code)
            role = self.runtime.store.role_of(session, token) or Role.CUSTOMER
        else:
            role = ctx.role
        await self.runtime.relay.send_message(code, token, role, _require(data, "message"))

    # ------------------------------------------------------------------ #
    # Negotiation
    # ------------------------------------------------------------------ #

    async def _propose_price(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        await self.runtime.negotiation.propose_price(
            code,
            token,
            _require(data, "product_id"),
            _require(data, "proposed_price"),
            data.get("round", 1),
            market_price=data.get("market_price"),
        )

    async def _respond_negotiation(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        await self.runtime.negotiation.respond_to_proposal(
            code,
            token,
            _require(data, "product_id"),
            data.get("negotiation_id"),
            _require(data, "response"),
            message=data.get("message"),
            final_price=data.get("final_price"),
        )

    async def _respond_final_offer(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        accept = data.get("accept")
        if not isinstance(accept, bool):
            raise ValidationError("accept must be true or false")
        await self.runtime.negotiation.respond_final_offer(
            code, token, _require(data, "product_id"), data.get("negotiation_id"), accept
        )

    async def _reset_negotiation(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.negotiation.reset_negotiation(code, token, _require(data, "product_id"))

    # ------------------------------------------------------------------ #
    # Settlement
    # ------------------------------------------------------------------ #

    async def _cash_payment_initiate(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.settlement.initiate_cash_settlement(code, token, data.get("total"))

    async def _cash_payment_confirm(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        receipt = self.runtime.settlement.confirm_cash_settlement(code, token, _require(data, "payment_ref"))
        if receipt.duplicate:
            self._reply(ctx, "payment-duplicate", receipt.to_dict())

    async def _cash_payment_reject(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        self.runtime.settlement.reject_cash_settlement(code, token, _require(data, "payment_ref"), data.get("reason"))

    async def _gateway_payment_initiate(self, ctx: ConnectionContext, data: dict):
        code, token = self._credentials(ctx, data)
        await self.runtime.settlement.initiate_gateway_settlement(code, token, data.get("total"))

    async def _gateway_payment_verify(self, ctx: ConnectionContext, data: dict):
        code = self.runtime.store.normalize_code(data.get("session_code") or ctx.session_code or "")
        receipt = await self.runtime.settlement.verify_gateway_settlement(
            code,
            _require(data, "order_id"),
            _require(data, "payment_id"),
            _require(data, "signature"),
        )
        if receipt.duplicate:
            self._reply(ctx, "payment-duplicate", receipt.to_dict())
