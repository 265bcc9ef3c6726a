"""
Negotiation state machine.

WHAT: Per-(session, product) price negotiation driven by customer offers and vendor answers
WHY: Floor prices are enforced server-side; the vendor keeps the final say above the floor
HOW: Synchronous classification and mutation, broadcast, then an awaited narrative re-checked for staleness

Transitions on a customer offer:
    offer >= floor                 -> pending_vendor_approval
    offer <  floor, round < limit  -> ai_counter_offer (suggested range + narrative)
    offer <  floor, round >= limit -> negotiation_limit_exceeded (narrative + closing statement)

Vendor answers to a pending proposal: accept | reject | custom_message | final_offer.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import uuid4

from ..core.config import settings
from ..core.session_store import SessionStore
from ..models.inventory import Product
from ..models.negotiation import (
    AWAITING_VENDOR_STATUSES,
    CLOSED_STATUSES,
    NegotiationOutcome,
    NegotiationRecord,
    NegotiationStatus,
    OfferEntry,
)
from ..models.session import Role, Session
from ..realtime.hub import Broadcaster
from ..utils.exceptions import (
    AwaitingVendorError,
    NegotiationClosedError,
    NegotiationStateError,
    StaleNegotiationError,
    StaleRoundError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.numbers import parse_finite
from .cart_reconciler import CartReconciler
from .inventory_ledger import InventoryLedger
from .message_relay import MessageRelay
from .message_transformer import MessageTransformer, validate_message_text
from .narrative_generator import NarrativeGenerator
from .prompts import closing_statement

logger = get_logger(__name__)

VENDOR_DECISIONS = ("accept", "reject", "custom_message", "final_offer")

# Statuses from which the vendor may still volunteer a message or a final price
VENDOR_INITIATIVE_STATUSES = AWAITING_VENDOR_STATUSES | {
    NegotiationStatus.AI_COUNTER_OFFER,
    NegotiationStatus.NEGOTIATION_LIMIT_EXCEEDED,
}


def suggested_range(floor_price: float, market_price: float) -> tuple[int, int]:
    """
    Counter-offer range [avg - 1, avg + 1].

    avg is the midpoint of floor and market price rounded half-up to a whole
    currency unit (floor=40, market=60 gives (49, 51)).
    """
    midpoint = (Decimal(str(floor_price)) + Decimal(str(market_price))) / 2
    avg = int(midpoint.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return avg - 1, avg + 1


def _parse_price(value, label: str = "Price") -> float:
    price = parse_finite(value, label)
    if price <= 0:
        raise ValidationError(f"{label} must be positive")
    return round(price, 2)


def _parse_round(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError("Round must be an integer")
    try:
        number = float(value)
    except ValueError:
        raise ValidationError("Round must be an integer")
    if not number.is_integer() or number < 1:
        raise ValidationError("Round must be a whole number starting at 1")
    return int(number)


class NegotiationEngine:
    """
    Negotiation state machine for every product of every session.

    Products negotiate independently. Every external await (narrative,
    translation, message relay) happens after the state change has been
    applied and broadcast; on resumption the record is checked again and
    late results for superseded records are dropped.
    """

    def __init__(
        self,
        store: SessionStore,
        ledger: InventoryLedger,
        cart: CartReconciler,
        narratives: NarrativeGenerator,
        transformer: MessageTransformer,
        relay: MessageRelay,
        broadcaster: Broadcaster,
        max_rounds: Optional[int] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.cart = cart
        self.narratives = narratives
        self.transformer = transformer
        self.relay = relay
        self.broadcaster = broadcaster
        self.max_rounds = max_rounds or settings.MAX_NEGOTIATION_ROUNDS

    # ------------------------------------------------------------------ #
    # Customer offers
    # ------------------------------------------------------------------ #

    async def propose_price(
        self,
        code: str,
        token: str,
        product_id: str,
        offered_price,
        round_number,
        market_price=None,
    ) -> NegotiationOutcome:
        """
        Classify a customer offer against the floor price.

        Args:
            market_price: Ignored; the ledger's market reference price is used

        Raises:
            FloorPriceNotSetError: Product has no floor price
            ProductNotFoundError: Unknown product
            AwaitingVendorError: The previous proposal is still with the vendor
            NegotiationClosedError: Negotiation accepted, final or over the round limit
            StaleRoundError: Round does not increase
        """
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)
        product = self.ledger.require_product(session, product_id)
        floor = self.ledger.floor_price_of(session, product_id)
        offer = _parse_price(offered_price, "Offered price")
        round_number = _parse_round(round_number)
        market = product.market_price
        # everything that can raise runs before the record is touched
        price_range = suggested_range(floor, market) if offer < floor else None

        record = self._open_record(session, product_id, round_number)

        if market_price is not None and market_price != product.market_price:
            logger.debug(f"[{session.code}] Ignoring client market price {market_price} for {product_id}")

        record.round = round_number
        record.offers.append(OfferEntry(round=round_number, price=offer))
        record.proposed_price = offer
        record.narrative = None
        record.touch()

        logger.info(
            f"[{session.code}] Offer for {product.name}: ₹{offer:g} (floor ₹{floor:g}, market ₹{market:g}), round {round_number}"
        )

        if offer >= floor:
            record.status = NegotiationStatus.PENDING_VENDOR_APPROVAL
            record.suggested_range = None
            outcome = self._outcome(record, product, floor, offered_price=offer)
            self._publish_pair(session, "negotiation-update", outcome)
            return outcome

        is_final = round_number >= self.max_rounds
        record.status = NegotiationStatus.NEGOTIATION_LIMIT_EXCEEDED if is_final else NegotiationStatus.AI_COUNTER_OFFER
        record.suggested_range = price_range
        outcome = self._outcome(record, product, floor, offered_price=offer, is_final=is_final)
        self._publish_pair(session, "negotiation-update", outcome)

        negotiation_id = record.negotiation_id
        message = await self._counter_narrative(session, product, offer, floor, market, round_number, price_range, is_final)

        current = session.negotiations.get(product_id)
        if (
            session.is_live
            and current is record
            and record.negotiation_id == negotiation_id
            and record.round == round_number
        ):
            record.narrative = message
            record.touch()
            self.broadcaster.publish(
                session.code,
                "negotiation-narrative",
                {
                    "negotiation_id": negotiation_id,
                    "product_id": product_id,
                    "round": round_number,
                    "status": record.status.value,
                    "message": message,
                    "is_final": is_final,
                },
                "all",
            )
        else:
            logger.info(f"[{session.code}] Narrative for {product_id} round {round_number} is stale; dropped")

        return outcome.model_copy(update={"message": message})

    def _open_record(self, session: Session, product_id: str, round_number: int) -> NegotiationRecord:
        """Current record for a product, created or reopened for a new offer."""
        record = session.negotiations.get(product_id)
        if record is None:
            record = NegotiationRecord(product_id=product_id)
            session.negotiations[product_id] = record
            return record

        if record.status in CLOSED_STATUSES:
            raise NegotiationClosedError(product_id, record.status.value)
        if record.status == NegotiationStatus.PENDING_VENDOR_APPROVAL:
            raise AwaitingVendorError(product_id, record.negotiation_id)
        if round_number <= record.round:
            raise StaleRoundError(product_id, round_number, record.round)

        if record.status == NegotiationStatus.REJECTED:
            previous_id = record.negotiation_id
            record.negotiation_id = str(uuid4())
            record.status = NegotiationStatus.ACTIVE
            record.final_price = None
            record.vendor_message = None
            logger.info(f"[{session.code}] Negotiation for {product_id} reopened ({previous_id} -> {record.negotiation_id})")
        return record

    async def _counter_narrative(
        self,
        session: Session,
        product: Product,
        offer: float,
        floor: float,
        market: float,
        round_number: int,
        price_range: tuple[int, int],
        is_final: bool,
    ) -> str:
        vendor_language = session.language_for(Role.VENDOR)
        customer_language = session.language_for(Role.CUSTOMER)

        body = await self.narratives.generate_counter_narrative(
            customer_offer=offer,
            floor_price=floor,
            market_price=market,
            product_name=product.name,
            round_number=round_number,
            language=vendor_language,
            suggested_range=price_range,
            is_final=is_final,
        )
        body = await self.transformer.translate(body, vendor_language, customer_language)
        if is_final:
            closing = closing_statement(customer_language)
            if not body.rstrip().endswith(closing):
                body = f"{body.rstrip()} {closing}"
        return body

    # ------------------------------------------------------------------ #
    # Vendor answers
    # ------------------------------------------------------------------ #

    def _current_record(self, session: Session, product_id: str, negotiation_id: Optional[str]) -> NegotiationRecord:
        record = session.negotiations.get(product_id)
        if record is None:
            raise StaleNegotiationError(product_id, negotiation_id or "", None)
        if negotiation_id and negotiation_id != record.negotiation_id:
            raise StaleNegotiationError(product_id, negotiation_id, record.negotiation_id)
        return record

    @staticmethod
    def _require_status(record: NegotiationRecord, allowed):
        if record.status not in allowed:
            raise NegotiationStateError(
                record.product_id, record.status.value, sorted(status.value for status in allowed)
            )

    async def respond_to_proposal(
        self,
        code: str,
        token: str,
        product_id: str,
        negotiation_id: Optional[str],
        decision: str,
        message: Optional[str] = None,
        final_price=None,
    ) -> NegotiationOutcome:
        """
        Apply the vendor's answer.

        accept         pending proposal -> accepted, cart line gets the offer
        reject         pending proposal -> rejected, customer may offer again
        custom_message text relayed to the customer, negotiation stays open
        final_offer    vendor names a last price the customer accepts or rejects
        """
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        if decision not in VENDOR_DECISIONS:
            raise ValidationError(f"Unknown vendor decision: {decision}. Expected one of {list(VENDOR_DECISIONS)}")
        product = self.ledger.require_product(session, product_id)
        record = self._current_record(session, product_id, negotiation_id)
        floor = product.floor_price

        if decision == "accept":
            self._require_status(record, AWAITING_VENDOR_STATUSES)
            # A custom message can follow a below-floor offer; that offer is never accepted as is
            if record.proposed_price is None or (floor is not None and record.proposed_price < floor):
                raise NegotiationStateError(product_id, record.status.value, ["pending_vendor_approval"])
            record.status = NegotiationStatus.ACCEPTED
            record.final_price = record.proposed_price
            record.touch()
            logger.info(f"[{session.code}] Vendor accepted ₹{record.final_price:g} for {product.name}")
            outcome = self._outcome(record, product, floor, offered_price=record.proposed_price)
            self._publish_vendor_response(session, outcome)
            self.cart.apply_agreed_price(session, product_id, record.final_price)
            return outcome

        if decision == "reject":
            self._require_status(record, AWAITING_VENDOR_STATUSES)
            record.status = NegotiationStatus.REJECTED
            record.final_price = None
            record.touch()
            logger.info(f"[{session.code}] Vendor rejected offer for {product.name}")
            outcome = self._outcome(record, product, floor, offered_price=record.proposed_price)
            outcome.next_round = record.round + 1
            self._publish_vendor_response(session, outcome)
            self.cart.mark_rejected(session, product_id)
            return outcome

        if decision == "final_offer":
            self._require_status(record, VENDOR_INITIATIVE_STATUSES)
            price = _parse_price(final_price, "Final price")
            note = None
            if isinstance(message, str) and message.strip():
                note = validate_message_text(message, "Final offer message")
            record.status = NegotiationStatus.FINAL_OFFER
            record.final_price = price
            record.vendor_message = note
            record.touch()
            logger.info(f"[{session.code}] Vendor final offer ₹{price:g} for {product.name}")
            outcome = self._outcome(record, product, floor, offered_price=record.proposed_price)
            outcome.message = record.vendor_message
            self._publish_vendor_response(session, outcome)
            return outcome

        # custom_message
        self._require_status(record, VENDOR_INITIATIVE_STATUSES - {NegotiationStatus.NEGOTIATION_LIMIT_EXCEEDED})
        text = validate_message_text(message, "Custom message")
        record.status = NegotiationStatus.CUSTOM_MESSAGE
        record.vendor_message = text
        record.touch()
        negotiation_id = record.negotiation_id
        outcome = self._outcome(record, product, floor, offered_price=record.proposed_price)
        outcome.message = record.vendor_message
        self._publish_vendor_response(session, outcome)

        relayed = await self.relay.deliver(
            session,
            Role.VENDOR,
            record.vendor_message,
            context={"negotiation_id": negotiation_id, "product_id": product_id},
        )
        if session.negotiations.get(product_id) is record and record.negotiation_id == negotiation_id:
            outcome = outcome.model_copy(update={"message": relayed.rendered_text})
        return outcome

    async def respond_final_offer(
        self,
        code: str,
        token: str,
        product_id: str,
        negotiation_id: Optional[str],
        accept: bool,
    ) -> NegotiationOutcome:
        """Customer answer to the vendor's final offer."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.CUSTOMER, token)
        product = self.ledger.require_product(session, product_id)
        record = self._current_record(session, product_id, negotiation_id)
        self._require_status(record, {NegotiationStatus.FINAL_OFFER})

        if accept:
            record.status = NegotiationStatus.ACCEPTED
            logger.info(f"[{session.code}] Customer accepted final offer ₹{record.final_price:g} for {product.name}")
        else:
            record.status = NegotiationStatus.REJECTED
            logger.info(f"[{session.code}] Customer declined final offer for {product.name}")
        record.touch()

        outcome = self._outcome(record, product, product.floor_price, offered_price=record.proposed_price)
        if not accept:
            outcome.next_round = record.round + 1
        self._publish_pair(session, "final-offer-response", outcome)

        if accept:
            self.cart.apply_agreed_price(session, product_id, record.final_price)
        else:
            record.final_price = None
            self.cart.mark_rejected(session, product_id)
        return outcome

    def reset_negotiation(self, code: str, token: str, product_id: str) -> bool:
        """Vendor clears a product's negotiation so the customer can start again at round 1."""
        session = self.store.require_live(code)
        self.store.authorize(session, Role.VENDOR, token)
        self.ledger.require_product(session, product_id)

        removed = session.negotiations.pop(product_id, None)
        if removed is None:
            return False
        logger.info(f"[{session.code}] Negotiation for {product_id} reset (was {removed.status.value})")
        self.broadcaster.publish(
            session.code,
            "negotiation-reset",
            {"product_id": product_id, "negotiation_id": removed.negotiation_id},
            "all",
        )
        self.cart.restore_list_price(session, product_id)
        return True

    def clear_session(self, session: Session):
        """Drop all negotiation state of a session (on disconnect)."""
        count = len(session.negotiations)
        session.negotiations.clear()
        logger.info(f"[{session.code}] Cleared {count} negotiations")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _outcome(
        self,
        record: NegotiationRecord,
        product: Product,
        floor: Optional[float],
        offered_price: Optional[float] = None,
        is_final: bool = False,
    ) -> NegotiationOutcome:
        reopenable = record.status in (NegotiationStatus.AI_COUNTER_OFFER, NegotiationStatus.CUSTOM_MESSAGE)
        return NegotiationOutcome(
            negotiation_id=record.negotiation_id,
            product_id=record.product_id,
            product_name=product.name,
            status=record.status,
            round=record.round,
            offered_price=offered_price,
            proposed_price=record.proposed_price,
            final_price=record.final_price,
            floor_price=floor,
            market_price=product.market_price,
            suggested_range=record.suggested_range,
            is_final=is_final or record.status in CLOSED_STATUSES,
            next_round=record.round + 1 if reopenable else None,
        )

    def _publish_pair(self, session: Session, event: str, outcome: NegotiationOutcome):
        self.broadcaster.publish(session.code, event, outcome.vendor_view(), "vendor")
        self.broadcaster.publish(session.code, event, outcome.customer_view(), "customer")

    def _publish_vendor_response(self, session: Session, outcome: NegotiationOutcome):
        self.broadcaster.publish(session.code, "negotiation-response", outcome.customer_view(), "customer")
        self.broadcaster.publish(session.code, "negotiation-updated", outcome.vendor_view(), "vendor")
